from dataclasses import dataclass
import os
from pathlib import Path
from dotenv import load_dotenv


load_dotenv()

BUNDLED_COEFFICIENTS_PATH = Path(__file__).resolve().parent.parent / "data" / "coefficients.json"


def _path_or_default(value: str, default: Path) -> Path:
    value = value.strip()
    return Path(value).expanduser() if value else default


@dataclass(frozen=True)
class Settings:
    coefficients_path: Path = _path_or_default(
        os.getenv("BULLETIN_COEFFICIENTS_PATH", ""), BUNDLED_COEFFICIENTS_PATH
    )
    log_level: str = os.getenv("BULLETIN_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"


settings = Settings()
