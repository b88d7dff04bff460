# archive_streams/services/license.py

from .media_data import Candidate, ItemMetadata

_PUBLIC_DOMAIN_RIGHTS = "public domain"
_PERMISSIVE_LICENSE_MARKERS = ("creativecommons", "/publicdomain", "pdm")


def is_permissive(
    candidate: Candidate,
    metadata: ItemMetadata | None,
    require_permissive: bool,
) -> bool:
    """
    License gate for one candidate.

    With the policy off every candidate is admitted. With it on, the item must
    declare public-domain rights or carry a Creative Commons / Public Domain
    Mark license URL. Item metadata takes precedence over the search record.
    """
    if not require_permissive:
        return True

    rights = (metadata.rights if metadata else None) or candidate.rights or ""
    license_url = (
        (metadata.license_url if metadata else None) or candidate.license_url or ""
    )
    if _PUBLIC_DOMAIN_RIGHTS in rights.lower():
        return True
    lowered = license_url.lower()
    return any(marker in lowered for marker in _PERMISSIVE_LICENSE_MARKERS)
