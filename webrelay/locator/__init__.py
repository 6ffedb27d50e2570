"""Element location: document bridge, locator and element registry."""

from webrelay.locator.bridge import BrowserUseBridge, DocumentBridge
from webrelay.locator.registry import ElementRegistry
from webrelay.locator.service import ElementLocator, box_from_geometry

__all__ = ['BrowserUseBridge', 'DocumentBridge', 'ElementLocator', 'ElementRegistry', 'box_from_geometry']
