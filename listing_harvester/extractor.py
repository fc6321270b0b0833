"""Declarative section extraction from the aggregated raw payload.

Walks ``SECTION_CATALOGUE`` against the payload and fails fast on the first
required section that matches nothing. Optional sections degrade to their
catalogue default and are logged as ``OptionalSectionMissing``.
"""

from typing import Any

from pydantic import BaseModel, Field

from listing_harvester.exceptions import RequiredSectionMissingError
from listing_harvester.logger import get_logger
from listing_harvester.selectors import SECTION_CATALOGUE, Section, SectionSpec

log = get_logger(__name__)


class SectionBundle(BaseModel):
    """Located sections plus the raw payload they were taken from.

    Attributes:
        sections: Section name to located (or defaulted) value.
        missing_optional: Optional sections that fell back to their default.
        raw: The full payload, kept for whole-payload searches such as the
            pets-allowed flag.
    """

    sections: dict[Section, Any]
    missing_optional: list[Section] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)

    def __getitem__(self, section: Section) -> Any:
        return self.sections[section]

    def get(self, section: Section, default: Any = None) -> Any:
        return self.sections.get(section, default)


def _locate(spec: SectionSpec, payload: dict[str, Any]) -> Any:
    value = spec.selector.resolve(payload)
    if value is not None and not spec.accepts(value):
        log.warning(
            "Section has unexpected shape",
            section=spec.section.value,
            selector=str(spec.selector),
            expects=spec.expects,
            actual=type(value).__name__,
        )
        return None
    return value


def extract_sections(
    payload: dict[str, Any],
    catalogue: tuple[SectionSpec, ...] = SECTION_CATALOGUE,
) -> SectionBundle:
    """Locate every catalogued section in ``payload``.

    Args:
        payload: Raw API payload keyed by endpoint.
        catalogue: Section specs to resolve.

    Returns:
        SectionBundle with one entry per catalogued section.

    Raises:
        RequiredSectionMissingError: Names the first mandatory section not found.
    """
    sections: dict[Section, Any] = {}
    missing_optional: list[Section] = []

    for spec in catalogue:
        value = _locate(spec, payload)

        if value is None and spec.required:
            log.error(
                "Required section missing",
                error_type="RequiredSectionMissing",
                section=spec.section.value,
                selector=str(spec.selector),
            )
            raise RequiredSectionMissingError(section=spec.section.value, selector=str(spec.selector))

        if value is None:
            log.warning(
                "Optional section missing, using default",
                error_type="OptionalSectionMissing",
                section=spec.section.value,
                selector=str(spec.selector),
            )
            missing_optional.append(spec.section)
            value = spec.default

        sections[spec.section] = value

    log.info(
        "Sections extracted",
        found=len(sections) - len(missing_optional),
        missing_optional=[section.value for section in missing_optional],
    )
    return SectionBundle(sections=sections, missing_optional=missing_optional, raw=payload)
