from webrelay.storage.service import IdentityStore

__all__ = ['IdentityStore']
