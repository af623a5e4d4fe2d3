"""
Form registry - one ``FormDefinition`` per compliance form type.

The lifecycle engine is generic; everything type-specific lives here:
the row fields, which of them must be filled before submission, which
identifier fields must be unique within a form, whether every row needs a
Collection Manager sign-off, and whether the form is scoped to a month.
"""

from dataclasses import dataclass, field

from app.core.exceptions import NotFoundError, ValidationError


@dataclass(frozen=True)
class FormDefinition:
    key: str
    title: str
    fields: tuple[str, ...]
    required_fields: tuple[str, ...]
    unique_fields: tuple[str, ...] = field(default=())
    requires_cm_approval: bool = False
    monthly: bool = True

    def clean_row(self, row: dict) -> dict:
        """Keep only known fields, trimming string values.

        Raises:
            ValidationError: a field holds a list or object instead of a value.
        """
        cleaned = {}
        for name in self.fields:
            value = row.get(name, "")
            if isinstance(value, (list, dict)):
                raise ValidationError(
                    f"Field '{name}' must be a single value.", details={"field": name},
                )
            if isinstance(value, str):
                value = value.strip()
            elif value is None:
                value = ""
            cleaned[name] = value
        return cleaned

    def missing_fields(self, row: dict) -> list[str]:
        missing = []
        for name in self.required_fields:
            value = row.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing


FORM_DEFINITIONS: dict[str, FormDefinition] = {}


def _register(definition: FormDefinition) -> None:
    FORM_DEFINITIONS[definition.key] = definition


_register(FormDefinition(
    key="codeOfConduct",
    title="Code of Conduct",
    fields=("name", "signature", "date"),
    required_fields=("name", "signature", "date"),
    monthly=False,
))
_register(FormDefinition(
    key="declarationCumUndertaking",
    title="Declaration Cum Undertaking",
    fields=("collectionManagerName", "collectionManagerEmployeeId", "collectionManagerSignature"),
    required_fields=("collectionManagerName", "collectionManagerEmployeeId"),
    unique_fields=("collectionManagerEmployeeId",),
))
_register(FormDefinition(
    key="agencyVisits",
    title="Agency Visit Details",
    fields=(
        "srNo", "dateOfVisit", "employeeId", "employeeName", "mobileNo",
        "branchLocation", "product", "bucketDpd", "timeIn", "timeOut",
        "signature", "purposeOfVisit",
    ),
    required_fields=("dateOfVisit", "employeeId", "employeeName", "purposeOfVisit"),
))
_register(FormDefinition(
    key="monthlyCompliance",
    title="Monthly Compliance Declaration",
    fields=(
        "srNo", "complianceParameters", "complied", "agencyRemarks",
        "collectionManagerName", "collectionManagerEmpId", "collectionManagerSign", "date",
    ),
    required_fields=("complianceParameters", "complied"),
    requires_cm_approval=True,
))
_register(FormDefinition(
    key="noDuesDeclaration",
    title="No Dues Declaration",
    fields=("productBucket", "month", "remarksBillAmount"),
    required_fields=("productBucket", "month"),
    requires_cm_approval=True,
))
_register(FormDefinition(
    key="assetManagement",
    title="Asset Management Declaration",
    fields=(
        "srNo", "systemCpuSerialNo", "ipAddress", "executiveName",
        "idCardNumber", "printerAccess", "assetDisposed",
    ),
    required_fields=("systemCpuSerialNo", "executiveName"),
    unique_fields=("systemCpuSerialNo",),
))
_register(FormDefinition(
    key="telephoneDeclaration",
    title="Telephone Lines Declaration",
    fields=("srNo", "telephoneNo", "username", "executiveCategory", "recordingLine", "remarks"),
    required_fields=("telephoneNo", "username"),
    unique_fields=("telephoneNo",),
))
_register(FormDefinition(
    key="manpowerRegister",
    title="Agency Manpower Register",
    fields=(
        "srNo", "executiveCategory", "hhdIdOfFos", "axisIdOfFos", "fosFullName",
        "dateOfJoining", "product", "cocSigned", "collectionManagerName",
        "collectionManagerId", "collectionManagerSign", "dateOfResignation",
        "idCardsIssuanceDate", "idCardReturnDate", "executiveSignature", "remarks",
    ),
    required_fields=("executiveCategory", "fosFullName", "dateOfJoining"),
    unique_fields=("axisIdOfFos",),
))
_register(FormDefinition(
    key="productDeclaration",
    title="Declaration of Product",
    fields=(
        "product", "bucket", "countOfCaseAllocated", "collectionManagerName",
        "collectionManagerLocation", "cmSign",
    ),
    required_fields=("product", "bucket", "countOfCaseAllocated"),
))
_register(FormDefinition(
    key="penaltyMatrix",
    title="Agency Penalty Matrix",
    fields=(
        "noticeRefNo", "nonComplianceMonth", "parameter", "product", "penaltyAmount",
        "penaltyDeductedMonth", "correctiveActionTaken", "agency",
        "agencyAuthorisedPersonSign", "signOfFpr",
    ),
    required_fields=("noticeRefNo", "parameter", "penaltyAmount"),
    unique_fields=("noticeRefNo",),
))
_register(FormDefinition(
    key="trainingTracker",
    title="Agency Training Tracker",
    fields=(
        "dateOfTraining", "trainingAgenda", "trainingName", "trainerName",
        "trainerEmpId", "noOfAttendees", "trainerRemarks",
    ),
    required_fields=("dateOfTraining", "trainingName", "trainerName"),
))
_register(FormDefinition(
    key="proactiveEscalation",
    title="Proactive Escalation Management Tracker",
    fields=(
        "lanCardNo", "customerName", "product", "currentBucket", "dateOfContact",
        "modeOfContact", "dateOfTrailUploaded", "listOfCaseWithReasons",
        "collectionManagerNameId",
    ),
    required_fields=("lanCardNo", "customerName", "dateOfContact"),
))
_register(FormDefinition(
    key="escalationDetails",
    title="Escalation Details",
    fields=(
        "customerName", "loanCardNo", "productBucketDpd", "dateEscalation",
        "escalationDetail", "collectionManagerRemark", "collectionManagerSign",
    ),
    required_fields=("customerName", "loanCardNo", "escalationDetail"),
))
_register(FormDefinition(
    key="paymentRegister",
    title="Payment Register",
    fields=(
        "srNo", "month", "eReceiptNo", "accountNo", "customerName", "receiptAmount",
        "modeOfPayment", "depositionDate", "fosHhdId", "fosName", "fosSign",
        "cmName", "cmVerificationStatus", "remarks",
    ),
    required_fields=("eReceiptNo", "accountNo", "receiptAmount"),
    unique_fields=("eReceiptNo",),
))
_register(FormDefinition(
    key="repoKitTracker",
    title="Repo Kit Tracker",
    fields=(
        "srNo", "repoKitNo", "issueDateFromBank", "lanNo", "product", "bucketDpd",
        "usedUnused", "executiveSign", "dateOfReturnToCo", "collectionManagerEmpId",
        "collectionManagerSign",
    ),
    required_fields=("repoKitNo", "issueDateFromBank"),
    unique_fields=("repoKitNo",),
))


def get_form_definition(form_type: str) -> FormDefinition:
    """Look up a definition; unknown types are reported as not found."""
    definition = FORM_DEFINITIONS.get(form_type)
    if definition is None:
        raise NotFoundError("Form type", form_type, message=f"Unknown form type '{form_type}'")
    return definition


def list_form_definitions() -> list[dict]:
    return [
        {
            "key": d.key,
            "title": d.title,
            "fields": list(d.fields),
            "required_fields": list(d.required_fields),
            "requires_cm_approval": d.requires_cm_approval,
            "monthly": d.monthly,
        }
        for d in FORM_DEFINITIONS.values()
    ]
