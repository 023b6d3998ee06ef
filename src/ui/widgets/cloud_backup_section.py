import threading
import flet as ft
from src.models.sync import SyncResult, SyncState, SyncStatus
from src.services.sync_manager import SyncManager
from src.services.sync_status import derive_sync_state, format_relative_time

# Ícone e cor por estado do indicador
STATE_ICONS = {
    SyncState.SYNCED: (ft.Icons.CLOUD_DONE, ft.Colors.GREEN),
    SyncState.PENDING: (ft.Icons.CLOUD_UPLOAD, ft.Colors.ORANGE_700),
    SyncState.SYNCING: (ft.Icons.CLOUD_SYNC, ft.Colors.BLUE),
    SyncState.OFFLINE: (ft.Icons.CLOUD_OFF, ft.Colors.GREY),
    SyncState.DISABLED: (ft.Icons.CLOUD_OFF, ft.Colors.GREY_400),
}

class SyncStatusIndicator(ft.Icon):
    def __init__(self, sync_service: SyncManager):
        super().__init__(name=ft.Icons.CLOUD_OFF)
        self.sync_service = sync_service
        self.is_online = True
        self.auto_sync_enabled = True

    def refresh(self, status: SyncStatus = None):
        status = status or self.sync_service.status.get_status()
        state = derive_sync_state(
            is_authenticated=self.sync_service.auth.get_current_user() is not None,
            auto_sync_enabled=self.auto_sync_enabled,
            is_online=self.is_online,
            is_syncing=self.sync_service.is_syncing,
            status=status,
        )
        self.name, self.color = STATE_ICONS[state]
        self.tooltip = f"Sync: {state.value}"

class CloudBackupSection(ft.Column):
    """Botões de sync (rotina e recuperação) e o último estado conhecido"""

    def __init__(self, page: ft.Page, sync_service: SyncManager, indicator: SyncStatusIndicator,
                 on_sign_out=None):
        super().__init__()
        self.page_ref = page
        self.sync_service = sync_service
        self.indicator = indicator
        self.on_sign_out = on_sign_out
        self._unsubscribe = None

        self.lbl_last_sync = ft.Text(size=12, color=ft.Colors.GREY_600)

        self.btn_sync = ft.ElevatedButton("Sincronizar", icon=ft.Icons.CLOUD_SYNC, on_click=self.run_sync)
        self.btn_upload = ft.TextButton("Enviar tudo", icon=ft.Icons.UPLOAD, on_click=self.run_upload)
        self.btn_download = ft.TextButton("Baixar tudo", icon=ft.Icons.DOWNLOAD, on_click=self.run_download)
        self.btn_clear = ft.TextButton("Limpar nuvem", icon=ft.Icons.DELETE_SWEEP, on_click=self.run_clear)
        self.btn_sign_out = ft.TextButton("Sair", icon=ft.Icons.LOGOUT, on_click=self.sign_out)

        self.controls = [
            ft.Row([self.btn_sync, self.lbl_last_sync]),
            ft.Row([self.btn_upload, self.btn_download, self.btn_clear, self.btn_sign_out], wrap=True),
        ]

    def did_mount(self):
        self._unsubscribe = self.sync_service.status.subscribe(self.on_status_change)
        self.on_status_change(self.sync_service.status.get_status())

    def will_unmount(self):
        if self._unsubscribe:
            self._unsubscribe()

    def on_status_change(self, status: SyncStatus):
        self.lbl_last_sync.value = format_relative_time(status.last_sync_at)
        self.indicator.refresh(status)
        self.page_ref.update()

    # --- Execução em background ---

    def _run_in_background(self, operation):
        buttons = [self.btn_sync, self.btn_upload, self.btn_download]
        for button in buttons:
            button.disabled = True
        self.btn_sync.text = "Sincronizando..."
        self.indicator.refresh()
        self.page_ref.update()

        def worker():
            result = operation()
            self.btn_sync.text = "Sincronizar"
            for button in buttons:
                button.disabled = False
            self.show_result(result)
            self.indicator.refresh()
            self.page_ref.update()

        threading.Thread(target=worker, daemon=True).start()

    def run_sync(self, e):
        self._run_in_background(self.sync_service.guarded_sync)

    def run_upload(self, e):
        self._run_in_background(self.sync_service.guarded_upload)

    def run_download(self, e):
        self._run_in_background(self.sync_service.guarded_download)

    def show_result(self, result: SyncResult):
        if result.blocked:
            message = f"Sync bloqueado: {result.block_reason}"
            color = ft.Colors.ORANGE_700
        elif result.success:
            if result.uploaded or result.downloaded:
                message = f"Sync OK! ▲{result.uploaded} ▼{result.downloaded}"
            else:
                message = "Tudo sincronizado."
            color = ft.Colors.GREEN
        else:
            message = f"Erro: {result.error or 'Não foi possível sincronizar'}"
            color = ft.Colors.RED
        self.page_ref.open(ft.SnackBar(ft.Text(message), bgcolor=color))

    def run_clear(self, e):
        ok = self.sync_service.clear_cloud_data()
        message = "Dados da nuvem apagados." if ok else "Falha ao limpar a nuvem."
        self.page_ref.open(ft.SnackBar(ft.Text(message)))

    def sign_out(self, e):
        self.sync_service.sign_out()
        if self.on_sign_out:
            self.on_sign_out()
