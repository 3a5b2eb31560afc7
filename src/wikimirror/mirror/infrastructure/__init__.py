"""Infrastructure adapters for mirroring."""

from wikimirror.mirror.infrastructure.api_log import ApiCallLog
from wikimirror.mirror.infrastructure.image_store import ImageStore
from wikimirror.mirror.infrastructure.mw_client import MediaWikiClient
from wikimirror.mirror.infrastructure.raw_store import RawPageStore
from wikimirror.mirror.infrastructure.skin import Skin

__all__ = ["ApiCallLog", "ImageStore", "MediaWikiClient", "RawPageStore", "Skin"]
