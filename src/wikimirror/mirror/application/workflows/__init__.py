from wikimirror.mirror.application.workflows.build_index import BuildIndexWorkflow
from wikimirror.mirror.application.workflows.build_pages import BuildPagesWorkflow
from wikimirror.mirror.application.workflows.sync_pages import SyncPagesWorkflow

__all__ = ["BuildIndexWorkflow", "BuildPagesWorkflow", "SyncPagesWorkflow"]
