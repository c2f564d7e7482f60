# Stylistic filter applied to every draw (CSS filter semantics, applied in order)
FILTER_CONTRAST: float = 1.1
FILTER_BRIGHTNESS: float = 1.05

# Drop shadow under the watermark
SHADOW_COLOR: tuple[int, int, int] = (0, 0, 0)
SHADOW_ALPHA: float = 0.5
SHADOW_BLUR: float = 4.0  # canvas shadowBlur, gaussian sigma is half of this

# Placement ranges (percentages, degrees)
MIN_POSITION: float = 0.0
MAX_POSITION: float = 100.0
MIN_SCALE: float = 5.0
MAX_SCALE: float = 100.0
MIN_OPACITY: float = 0.1
MAX_OPACITY: float = 1.0
MIN_ROTATION: float = -180.0
MAX_ROTATION: float = 180.0

# Defaults for a freshly created watermark
DEFAULT_NAME: str = "My Watermark"
DEFAULT_X: float = 90.0
DEFAULT_Y: float = 90.0
DEFAULT_SCALE: float = 15.0
DEFAULT_OPACITY: float = 0.9
DEFAULT_ROTATION: float = 0.0

# Reserved preset id meaning "no watermark"
NONE_WATERMARK_ID: str = "none"

# Quick-position presets (x%, y%)
PRESET_POSITIONS: dict[str, tuple[float, float]] = {
    "top-left": (10.0, 10.0),
    "top": (50.0, 10.0),
    "top-right": (90.0, 10.0),
    "left": (10.0, 50.0),
    "center": (50.0, 50.0),
    "right": (90.0, 50.0),
    "bottom-left": (10.0, 90.0),
    "bottom": (50.0, 90.0),
    "bottom-right": (90.0, 90.0),
}

# Preview shapes offered by the editor
ASPECT_RATIOS: tuple[str, ...] = ("1:1", "16:9", "9:16", "4:3", "3:4")

# Video capture
CAPTURE_FPS: int = 30
READY_TIMEOUT: float = 30.0  # seconds to wait for metadata and the first frame

# Video bitrate tiers (in bits per second)
BITRATE_720P: int = 8_000_000  # 8 Mbps
BITRATE_1080P: int = 15_000_000  # 15 Mbps
BITRATE_4K: int = 40_000_000  # 40 Mbps
BITRATE_HIGHER: int = 60_000_000  # 60 Mbps

# Resolution thresholds (pixels)
PIXELS_720P: int = 1280 * 720  # 921,600
PIXELS_1080P: int = 1920 * 1080  # 2,073,600
PIXELS_4K: int = 3840 * 2160  # 8,294,400
