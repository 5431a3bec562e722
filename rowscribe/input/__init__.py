"""Input layer: scene loading and tile recognizers."""

from .elements import load_scene, parse_scene
from .ocr import MockOCREngine, Pix2TexEngine, create_engine

__all__ = ["load_scene", "parse_scene", "MockOCREngine", "Pix2TexEngine", "create_engine"]
