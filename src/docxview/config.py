"""Application settings for docxview.

Every heuristic threshold used by the parser and the layout engine lives here
so it can be tuned through ``DOCXVIEW_*`` environment variables or ``.env``.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "docxview"
    log_level: str = "WARNING"

    # Heading heuristics (text-based detection of unstyled headings)
    heading_max_chars: int = 60
    heading_min_chars: int = 3
    heading_max_words: int = 10
    heading_caps_min_chars: int = 15
    heading_caps_max_chars: int = 50
    heading_level1_max_chars: int = 20
    heading_level2_max_chars: int = 40
    auto_number_headings: bool = True
    auto_number_min_headings: int = 3

    # Lists
    list_indent_unit: int = 2

    # Tables
    numeric_column_ratio: float = 0.7
    min_column_width: int = 3

    # Layout
    image_max_rows: int = 15
    image_max_columns: int = 80
    color_enabled: bool = True
    words_per_page: int = 250

    model_config = SettingsConfigDict(env_prefix="DOCXVIEW_", env_file=".env", extra="ignore")


settings = Settings()
