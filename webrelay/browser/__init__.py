from webrelay.browser.service import BrowserHost

__all__ = ['BrowserHost']
