"""Mirror package."""

from wikimirror.mirror.domain.models import BuiltPage, SyncResult
from wikimirror.mirror.runner import (
    build_index,
    build_pages,
    init_mirror,
    open_mirror,
    run_full_update,
    run_full_update_async,
    run_incremental_update,
    run_incremental_update_async,
    run_update_images,
    run_update_images_async,
    run_update_metadata,
    run_update_metadata_async,
    run_update_page,
    run_update_page_async,
)

__all__ = [
    "build_index",
    "build_pages",
    "BuiltPage",
    "init_mirror",
    "open_mirror",
    "run_full_update",
    "run_full_update_async",
    "run_incremental_update",
    "run_incremental_update_async",
    "run_update_images",
    "run_update_images_async",
    "run_update_metadata",
    "run_update_metadata_async",
    "run_update_page",
    "run_update_page_async",
    "SyncResult",
]
