"""ILR return files: reading uploaded XML/ZIP returns and writing export XML."""

import io
import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from datetime import date

from skilltrack.models import IlrLearnerRecord
from skilltrack.validation import validate_ilr_learner

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xml", ".zip")
DEFAULT_UKPRN = "10004300"
ILR_NAMESPACE = "ESFA/ILR/2024-25"
MAX_XML_BYTES = 10 * 1024 * 1024

# Maps ILR element names onto the keys validate_ilr_learner expects
_LEARNER_FIELDS = {
    "LearnRefNumber": "learnRefNumber",
    "ULN": "uln",
    "FamilyName": "lastName",
    "GivenNames": "firstName",
    "DateOfBirth": "dateOfBirth",
    "Postcode": "postcode",
}
_DELIVERY_FIELDS = {
    "LearnAimRef": "aimReference",
    "FundModel": "fundingModel",
    "LearnStartDate": "startDate",
    "LearnPlanEndDate": "plannedEndDate",
    "CompStatus": "compStatus",
}


class IlrFileError(ValueError):
    """The uploaded file is not a readable ILR return."""


@dataclass
class ParsedLearner:
    index: int
    cleaned: dict
    errors: dict
    warnings: dict


@dataclass
class IlrParseResult:
    learners: list[ParsedLearner] = field(default_factory=list)

    @property
    def valid(self) -> list[ParsedLearner]:
        return [p for p in self.learners if not p.errors]

    @property
    def error_count(self) -> int:
        return sum(1 for p in self.learners if p.errors)

    @property
    def warning_count(self) -> int:
        return sum(len(p.warnings) for p in self.learners)

    def messages(self) -> list[str]:
        lines = []
        for p in self.learners:
            ref = p.cleaned.get("learn_ref_number") or f"learner #{p.index}"
            for key, msg in p.errors.items():
                lines.append(f"ERROR {ref} {key}: {msg}")
            for key, msg in p.warnings.items():
                lines.append(f"WARNING {ref} {key}: {msg}")
        return lines


def _local(tag: str) -> str:
    """Strip any ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _child_text(elem, name):
    for child in elem:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def read_xml_bytes(filename: str, payload: bytes, max_size: int = MAX_XML_BYTES) -> bytes:
    """Return the XML document inside an uploaded ``.xml`` or ``.zip`` file.

    The uncompressed XML inside a ZIP may not exceed *max_size* bytes.  The
    size recorded in the archive is checked first and the read itself is
    bounded, so a member whose header understates its size is caught too.
    """
    name = (filename or "").lower()
    if name.endswith(".xml"):
        return payload
    if not name.endswith(".zip"):
        raise IlrFileError("Only XML and ZIP files are allowed")
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            xml_names = [n for n in archive.namelist() if n.lower().endswith(".xml")]
            if len(xml_names) != 1:
                raise IlrFileError("ZIP file must contain exactly one XML file")
            info = archive.getinfo(xml_names[0])
            if info.file_size > max_size:
                raise IlrFileError("ZIP contents exceed the maximum upload size")
            with archive.open(info) as member:
                data = member.read(max_size + 1)
            if len(data) > max_size:
                raise IlrFileError("ZIP contents exceed the maximum upload size")
            return data
    except zipfile.BadZipFile as exc:
        raise IlrFileError("ZIP file is corrupt") from exc


def parse_ilr(xml_bytes: bytes, today=None) -> IlrParseResult:
    """Parse an ILR ``Message`` document and validate every ``Learner`` in it.

    The provider UKPRN is taken from ``LearningProvider/UKPRN`` (or the header
    ``Source/UKPRN``).  Only the first ``LearningDelivery`` of each learner
    is read, which is the programme aim for apprenticeship returns.

    Raises:
        IlrFileError: the document is not well-formed or not an ILR message.
    """
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as exc:
        raise IlrFileError(f"XML could not be parsed: {exc}") from exc
    if _local(root.tag) != "Message":
        raise IlrFileError("Root element must be an ILR <Message>")

    ukprn = ""
    for elem in root.iter():
        if _local(elem.tag) in ("LearningProvider", "Source"):
            ukprn = _child_text(elem, "UKPRN") or ukprn
            if ukprn:
                break

    result = IlrParseResult()
    learners = [e for e in root if _local(e.tag) == "Learner"]
    for index, elem in enumerate(learners, start=1):
        raw = {"ukprn": ukprn}
        for tag, key in _LEARNER_FIELDS.items():
            raw[key] = _child_text(elem, tag) or ""
        if not raw["postcode"]:
            raw["postcode"] = _child_text(elem, "PostcodePrior") or ""
        delivery = next((c for c in elem if _local(c.tag) == "LearningDelivery"), None)
        if delivery is not None:
            for tag, key in _DELIVERY_FIELDS.items():
                raw[key] = _child_text(delivery, tag) or ""
        cleaned, errors, warnings = validate_ilr_learner(raw, today=today)
        if delivery is None:
            errors["LearningDelivery"] = "Learner has no learning delivery"
        status, completion = _status_from_comp(raw.get("compStatus"))
        cleaned["status"] = status
        cleaned["completion_status"] = completion
        result.learners.append(ParsedLearner(index, cleaned, errors, warnings))

    logger.info(
        "Parsed ILR return: learners=%d errors=%d warnings=%d",
        len(result.learners), result.error_count, result.warning_count,
    )
    return result


def _status_from_comp(code):
    return IlrLearnerRecord.COMP_STATUS_CODES.get((code or "").strip(), ("active", "continuing"))


def _comp_code_for(record) -> str:
    for code, (status, completion) in IlrLearnerRecord.COMP_STATUS_CODES.items():
        if status == record.status and completion == record.completion_status:
            return code
    return "1"


def _sub(parent, tag, text=None):
    elem = ET.SubElement(parent, tag)
    if text is not None:
        elem.text = str(text)
    return elem


def build_export_xml(records, academic_year: str, ukprn: str = DEFAULT_UKPRN, prepared=None) -> bytes:
    """Serialise learner records into an ILR ``Message`` document.

    *academic_year* is written in ILR collection form (``2024/25`` -> ``2425``).
    """
    prepared = prepared or date.today()
    ET.register_namespace("", ILR_NAMESPACE)
    ns = f"{{{ILR_NAMESPACE}}}"
    root = ET.Element(f"{ns}Message")

    header = _sub(root, f"{ns}Header")
    collection = _sub(header, f"{ns}CollectionDetails")
    _sub(collection, f"{ns}Collection", "ILR")
    _sub(collection, f"{ns}Year", academic_year.replace("/", "")[2:])
    _sub(collection, f"{ns}FilePreparationDate", prepared.isoformat())
    source = _sub(header, f"{ns}Source")
    _sub(source, f"{ns}ProtectiveMarking", "OFFICIAL-SENSITIVE-Personal")
    _sub(source, f"{ns}UKPRN", ukprn)
    _sub(source, f"{ns}SoftwareSupplier", "SkillTrack")
    _sub(source, f"{ns}SoftwarePackage", "SkillTrack ILR Export")
    _sub(source, f"{ns}Release", "1.0")

    provider = _sub(root, f"{ns}LearningProvider")
    _sub(provider, f"{ns}UKPRN", ukprn)

    for record in records:
        learner = _sub(root, f"{ns}Learner")
        _sub(learner, f"{ns}LearnRefNumber", record.learn_ref_number or f"LRN{record.id:04d}")
        _sub(learner, f"{ns}ULN", record.uln)
        _sub(learner, f"{ns}FamilyName", record.last_name)
        _sub(learner, f"{ns}GivenNames", record.first_name)
        if record.date_of_birth:
            _sub(learner, f"{ns}DateOfBirth", record.date_of_birth.isoformat())
        _sub(learner, f"{ns}Postcode", record.postcode)
        delivery = _sub(learner, f"{ns}LearningDelivery")
        _sub(delivery, f"{ns}LearnAimRef", record.aim_reference)
        _sub(delivery, f"{ns}AimType", "1")
        _sub(delivery, f"{ns}AimSeqNumber", "1")
        if record.start_date:
            _sub(delivery, f"{ns}LearnStartDate", record.start_date.isoformat())
        if record.planned_end_date:
            _sub(delivery, f"{ns}LearnPlanEndDate", record.planned_end_date.isoformat())
        _sub(delivery, f"{ns}FundModel", record.funding_model)
        _sub(delivery, f"{ns}CompStatus", _comp_code_for(record))

    ET.indent(root)
    return ET.tostring(root, encoding="UTF-8", xml_declaration=True)
