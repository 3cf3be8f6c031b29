"""DevContext: save code snippets and answers, find them again from your editor.

A local store of captured snippets and Q&A items with duplicate
detection, ranked search, editor-context matching and multi-device sync.
"""

__version__ = "0.1.0"

from devcontext.content_manager import CaptureResult, ContentManager  # noqa: E402

__all__ = ["CaptureResult", "ContentManager", "__version__"]
