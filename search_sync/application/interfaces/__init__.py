from search_sync.application.interfaces.change_source import ChangeSetSource
from search_sync.application.interfaces.index_sink import IndexSink

__all__ = ["ChangeSetSource", "IndexSink"]
