"""
Data models for the website replica pipeline and its API
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Keys of assets that carry inline content instead of a real URL start with this
INLINE_MARKER = "inline-"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    CLONING = "cloning"
    COMPLETED = "completed"
    ERROR = "error"


class AssetType(str, Enum):
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"


class OutputMode(str, Enum):
    """How the materializer treats downloaded assets"""
    EMBED = "embed"
    LOCAL_PATHS = "local-paths"


class AcquisitionStrategy(str, Enum):
    STRUCTURED = "structured"
    RENDERED = "rendered"
    STATIC = "static"


class CaptureMode(str, Enum):
    STANDARD = "standard"
    RESPONSIVE = "responsive"
    INTERACTIVE = "interactive"
    ANIMATIONS = "animations"
    STYLE_ANALYSIS = "style-analysis"
    NAVIGATION = "navigation"


class CloneOptions(BaseModel):
    """Capability flags for one clone run. camelCase keys are accepted as aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    include_assets: bool = Field(True, description="Run the asset pipeline")
    use_browser_automation: bool = Field(False, description="Prefer rendered capture over static fetch")
    capture_responsive: bool = False
    capture_interactive: bool = False
    capture_animations: bool = False
    capture_style_analysis: bool = False
    capture_navigation: bool = False
    performance_analysis: bool = False
    seo_analysis: bool = False
    security_scan: bool = False
    technology_detection: bool = False
    output_mode: OutputMode = OutputMode.EMBED
    strategy: Optional[AcquisitionStrategy] = Field(
        None, description="Force an acquisition strategy instead of detecting one"
    )

    def selected_capture_modes(self) -> List[CaptureMode]:
        flags = [
            (self.capture_responsive, CaptureMode.RESPONSIVE),
            (self.capture_interactive, CaptureMode.INTERACTIVE),
            (self.capture_animations, CaptureMode.ANIMATIONS),
            (self.capture_style_analysis, CaptureMode.STYLE_ANALYSIS),
            (self.capture_navigation, CaptureMode.NAVIGATION),
        ]
        return [mode for enabled, mode in flags if enabled]

    def capture_mode(self) -> CaptureMode:
        modes = self.selected_capture_modes()
        return modes[0] if modes else CaptureMode.STANDARD

    def wants_rendered_capture(self) -> bool:
        return self.use_browser_automation or bool(self.selected_capture_modes())


class Dimensions(BaseModel):
    width: int
    height: int


class Asset(BaseModel):
    """A downloaded (or inline) resource referenced by the document"""
    type: AssetType
    original_url: str = Field(..., description="Unique key within a run")
    source_ref: Optional[str] = Field(
        None, description="Reference as written in the markup, when it differs from original_url"
    )
    local_path: str
    size: int = 0
    content: str = ""
    format: str = ""
    mime_type: Optional[str] = None
    dimensions: Optional[Dimensions] = None

    @property
    def is_synthetic(self) -> bool:
        return self.original_url.startswith(INLINE_MARKER)


class StructuredContentInfo(BaseModel):
    is_detected: bool = False
    api_available: bool = False
    version: Optional[str] = None
    site_name: Optional[str] = None
    page_builder: Optional[str] = None
    posts_cloned: int = 0
    pages_cloned: int = 0
    blocks_count: int = 0
    confidence: int = 0


class Metadata(BaseModel):
    title: str = "Untitled Website"
    description: Optional[str] = None
    favicon: Optional[str] = None
    framework: str = "Vanilla"
    responsive: bool = False
    total_size: int = 0
    asset_count: int = 0
    page_count: int = 1
    page_builder: Optional[str] = None
    wordpress: Optional[StructuredContentInfo] = None
    degraded: List[str] = Field(default_factory=list)


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    category: str = "clone"
    message: str
    details: Optional[Dict[str, Any]] = None


class CloneRun(BaseModel):
    """Aggregate root for one clone request"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    url: str
    status: RunStatus = RunStatus.PENDING
    progress: int = 0
    current_step: str = "Initializing"
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    strategy: Optional[AcquisitionStrategy] = None
    source_html: Optional[str] = None
    html: Optional[str] = None
    logs: List[LogEntry] = Field(default_factory=list)
    assets: List[Asset] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=Metadata)
    score: Optional[int] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)


# ---- rendered capture ----

class ImageLayout(BaseModel):
    src: str
    width: float
    height: float


class CaptureResources(BaseModel):
    images: List[str] = Field(default_factory=list)
    fonts: List[str] = Field(default_factory=list)
    stylesheets: List[str] = Field(default_factory=list)


class CaptureResult(BaseModel):
    html: str
    styles: str = ""
    scripts: List[str] = Field(default_factory=list)
    resources: CaptureResources = Field(default_factory=CaptureResources)
    screenshot: Optional[str] = None
    layout: List[ImageLayout] = Field(default_factory=list)
    mode_data: Optional[Dict[str, Any]] = None


# ---- structured content ----

class Block(BaseModel):
    """A content block parsed from a block-comment delimited post body"""
    namespace: str = "core"
    name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    inner_html: str = ""
    inner_blocks: List["Block"] = Field(default_factory=list)


Block.model_rebuild()


class PageBuilderInfo(BaseModel):
    name: str = "unknown"
    is_active: bool = False
    version: Optional[str] = None


class WordPressDetection(BaseModel):
    is_detected: bool = False
    api_url: Optional[str] = None
    confidence: int = 0
    version: Optional[str] = None
    site_name: Optional[str] = None
    page_builder: Optional[PageBuilderInfo] = None
    indicators: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class StructuredItem(BaseModel):
    id: Optional[int] = None
    kind: str = "post"
    title: str = ""
    link: Optional[str] = None
    content_html: str = ""
    blocks: List[Block] = Field(default_factory=list)


class StructuredContent(BaseModel):
    posts: List[StructuredItem] = Field(default_factory=list)
    pages: List[StructuredItem] = Field(default_factory=list)
    blocks_count: int = 0
    page_builder: Optional[PageBuilderInfo] = None
    site_info: Dict[str, Any] = Field(default_factory=dict)


# ---- HTTP API ----

class CloneRequestModel(BaseModel):
    """Request model for website cloning"""
    url: str = Field(..., description="URL of website to clone")
    options: CloneOptions = Field(
        default_factory=CloneOptions,
        description="Optional configuration parameters for cloning"
    )


class CloneResponseModel(BaseModel):
    """Response model for website cloning"""
    request_id: str = Field(..., description="Unique ID for this cloning request")
    status: str = Field(..., description="Status of the cloning request")
    url: str = Field(..., description="Original URL that was cloned")


class CloneResultModel(BaseModel):
    """Model for the result of a cloning operation"""
    request_id: str = Field(..., description="Unique ID for this cloning request")
    status: str = Field(..., description="Status of the cloning process")
    url: str = Field(..., description="Original URL that was cloned")
    progress: int = Field(0, description="Progress percentage (0-100)")
    current_step: Optional[str] = Field(None, description="Human readable step label")
    cloned_html: Optional[str] = Field(None, description="The cloned HTML content")
    error: Optional[str] = Field(None, description="Error message if cloning failed")
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        description="Metadata about the cloning process"
    )
