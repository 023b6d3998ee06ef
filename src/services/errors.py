class SyncError(Exception):
    """Erro base da camada de sincronização"""

class NotAuthenticatedError(SyncError):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)

class RemoteStoreError(SyncError):
    """O servidor recusou a requisição (resposta não-2xx)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
