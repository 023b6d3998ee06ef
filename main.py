import logging
import threading
import flet as ft
from src.config import LOG_LEVEL
from src.models.sync import EntityType, SyncTrigger
from src.services.sync_manager import SyncManager
from src.ui.pages.login_page import LoginPage
from src.ui.widgets.bookmark_list import BookmarkList
from src.ui.widgets.cloud_backup_section import CloudBackupSection, SyncStatusIndicator

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("OneTap")

def main(page: ft.Page):
    page.title = "OneTap"
    page.theme_mode = ft.ThemeMode.LIGHT

    try:
        sync_service = SyncManager()
        # Lixeira: o que passou do prazo é apagado (e vira tombstone)
        sync_service.repositories[EntityType.TRASH].purge_expired()
    except Exception as e:
        page.add(ft.Text(f"Erro de Setup: {e}", color="red"))
        return

    auth = sync_service.auth

    def start_daily_sync():
        # O guard decide se já passou o intervalo mínimo
        def worker():
            result = sync_service.guarded_sync(SyncTrigger.DAILY_AUTO)
            if result.blocked:
                logger.info(f"Auto-sync skipped: {result.block_reason}")
        threading.Thread(target=worker, daemon=True).start()

    def route_change(route):
        page.views.clear()

        if page.route == "/login":
            page.views.append(
                ft.View(
                    "/login",
                    [LoginPage(page, auth, on_login_success=lambda: page.go("/"))],
                    vertical_alignment=ft.MainAxisAlignment.CENTER,
                    horizontal_alignment=ft.CrossAxisAlignment.CENTER
                )
            )

        elif page.route == "/":
            current_user = auth.get_current_user()
            if not current_user:
                page.go("/login")
                return

            indicator = SyncStatusIndicator(sync_service)
            backup_section = CloudBackupSection(
                page, sync_service, indicator, on_sign_out=lambda: page.go("/login")
            )
            lista_view = BookmarkList(
                page,
                sync_service.repositories[EntityType.BOOKMARK],
                sync_service.repositories[EntityType.TRASH],
            )

            page.views.append(
                ft.View(
                    "/",
                    [
                        ft.AppBar(
                            title=ft.Text(current_user.email or "OneTap"),
                            bgcolor=ft.Colors.BLUE_700,
                            color=ft.Colors.WHITE,
                            actions=[ft.Container(content=indicator, padding=10)]
                        ),
                        ft.Container(content=backup_section, padding=10),
                        lista_view
                    ]
                )
            )
            start_daily_sync()

        page.update()

    def view_pop(view):
        page.views.pop()
        top_view = page.views[-1]
        page.go(top_view.route)

    page.on_route_change = route_change
    page.on_view_pop = view_pop
    page.go("/" if auth.get_current_user() else "/login")

if __name__ == "__main__":
    ft.app(target=main)
