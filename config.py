import os

class Config:
    # API Configuration
    API_TITLE = "ImageFit API"
    API_VERSION = "1.0.0"
    API_DESCRIPTION = "Compress images to an exact byte budget"

    # Encoder quality scale searched by compress-to-size
    QUALITY_MIN = int(os.getenv("QUALITY_MIN", "10"))
    QUALITY_MAX = int(os.getenv("QUALITY_MAX", "100"))

    # "pillow" or "opencv"
    ENCODER_BACKEND = os.getenv("ENCODER_BACKEND", "pillow")
    DEFAULT_FORMAT = os.getenv("DEFAULT_FORMAT", "jpeg")

    # Limits
    MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(10 * 1024 * 1024)))
    PROCESSING_TIMEOUT = float(os.getenv("PROCESSING_TIMEOUT", "60"))

    # Server
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    PORT = int(os.getenv("PORT", "7860"))

    @property
    def QUALITY_RANGE(self) -> tuple:
        return (self.QUALITY_MIN, self.QUALITY_MAX)

settings = Config()
