"""Form discovery over the local storage directory."""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from form_export.models.form import FormDefinition

logger = logging.getLogger(__name__)

FORMS_DIR = "forms"


def local_name(tag: str) -> str:
    """Strip the namespace from an ElementTree tag."""
    return tag.rsplit("}", 1)[-1]


def _attribute(element: ET.Element, name: str) -> str | None:
    for key, value in element.attrib.items():
        if local_name(key) == name:
            return value
    return None


class FormDiscoveryService:
    """Finds form definitions stored under `<storage>/forms/<form>/`."""

    def __init__(self, storage_dir: Path | str) -> None:
        self.storage_dir = Path(storage_dir)

    @property
    def forms_dir(self) -> Path:
        return self.storage_dir / FORMS_DIR

    def discover(self) -> list[FormDefinition]:
        """Scan the storage directory for form definitions.

        Forms are returned sorted by directory name. Directories without a
        readable definition are skipped with a warning.
        """
        if not self.forms_dir.is_dir():
            logger.warning("No forms directory in %s", self.storage_dir)
            return []

        forms = []
        for form_dir in sorted(p for p in self.forms_dir.iterdir() if p.is_dir()):
            definition_file = self._definition_file(form_dir)
            if definition_file is None:
                continue
            try:
                forms.append(self.read_definition(definition_file))
            except (ET.ParseError, ValueError) as e:
                logger.warning("Skipping form in %s: %s", form_dir, e)
        return forms

    @staticmethod
    def _definition_file(form_dir: Path) -> Path | None:
        preferred = form_dir / f"{form_dir.name}.xml"
        if preferred.is_file():
            return preferred
        candidates = sorted(form_dir.glob("*.xml"))
        return candidates[0] if candidates else None

    @staticmethod
    def read_definition(definition_file: Path) -> FormDefinition:
        """Read a form's identity and encryption flags from its XForm.

        Raises:
            ET.ParseError: If the file is not well-formed XML
            ValueError: If the primary instance has no form id
        """
        root = ET.parse(definition_file).getroot()

        title = None
        instance_root = None
        file_encrypted = False
        field_encrypted = False
        for element in root.iter():
            name = local_name(element.tag)
            if name == "title" and title is None:
                title = (element.text or "").strip()
            elif name == "instance" and instance_root is None and _attribute(element, "id") is None:
                children = list(element)
                instance_root = children[0] if children else None
            elif name == "submission" and _attribute(element, "base64RsaPublicKey"):
                file_encrypted = True
            elif name == "bind" and (_attribute(element, "encrypted") or "").lower() in ("true", "yes"):
                field_encrypted = True

        form_id = _attribute(instance_root, "id") if instance_root is not None else None
        if not form_id:
            raise ValueError(f"No form id in {definition_file}")

        return FormDefinition(
            form_id=form_id,
            form_name=title or form_id,
            file_encrypted=file_encrypted,
            field_encrypted=field_encrypted,
            form_dir=str(definition_file.parent),
        )
