from .deleted import DeleteNoticeResolver
from .status import StatusViewer

__all__ = ["DeleteNoticeResolver", "StatusViewer"]
