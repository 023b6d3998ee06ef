import flet as ft
from typing import List
from src.models.bookmark import Bookmark
from src.data.bookmark_repository import BookmarkRepository, TrashRepository
from src.data.local_repository import LocalRepository

class BookmarkList(ft.Column):
    def __init__(self, page: ft.Page, repository: BookmarkRepository, trash_repository: TrashRepository):
        super().__init__()
        self.page_ref = page
        self.repository = repository
        self.trash_repository = trash_repository

        self.bookmarks: List[Bookmark] = []
        self.bookmark_to_delete = None
        self.dlg_delete = None
        self._unsubscribe = None

        self.expand = True

        self.txt_search = ft.TextField(
            label="Buscar Link",
            hint_text="Título ou URL",
            prefix_icon=ft.Icons.SEARCH,
            on_change=self.on_search_change,
            border_radius=10
        )
        self.txt_new_url = ft.TextField(
            label="Novo link",
            hint_text="https://",
            expand=True,
            on_submit=self.on_add_click
        )

        self.list_view = ft.ListView(expand=True, spacing=10, padding=10)
        self.lbl_status = ft.Text("Carregando...", italic=True, color=ft.Colors.GREY_500)

        self.controls = [
            ft.Row([self.txt_new_url, ft.IconButton(ft.Icons.ADD_LINK, on_click=self.on_add_click)]),
            ft.Container(content=self.txt_search, padding=ft.padding.only(bottom=10)),
            self.lbl_status,
            self.list_view,
        ]

    def did_mount(self):
        # Recarrega quando o sync (ou outra tela) escrever na tabela
        self._unsubscribe = LocalRepository.subscribe(
            self.repository.table_name, lambda _: self.load_data(self.txt_search.value or "")
        )
        self.load_data()

    def will_unmount(self):
        if self._unsubscribe:
            self._unsubscribe()

    def load_data(self, query: str = ""):
        try:
            self.bookmarks = self.repository.search(query)
            self.render_list()
        except Exception as e:
            self.lbl_status.value = f"Erro: {e}"
            self.lbl_status.visible = True
            self.update()

    def on_search_change(self, e):
        self.load_data(e.control.value)

    def on_add_click(self, e):
        url = (self.txt_new_url.value or "").strip()
        if not url:
            return
        self.repository.add_link(url)
        self.txt_new_url.value = ""
        self.update()

    def render_list(self):
        self.list_view.controls.clear()

        if not self.bookmarks:
            self.lbl_status.value = "Nenhum link salvo."
            self.lbl_status.visible = True
        else:
            self.lbl_status.visible = False
            for bookmark in self.bookmarks:
                self.list_view.controls.append(
                    ft.ListTile(
                        leading=ft.Icon(ft.Icons.LINK),
                        title=ft.Text(bookmark.title or bookmark.url),
                        subtitle=ft.Text(bookmark.folder or bookmark.url, size=12),
                        trailing=ft.IconButton(
                            ft.Icons.DELETE_OUTLINE,
                            tooltip="Mover para a lixeira",
                            on_click=lambda e, b=bookmark: self.confirm_delete(b),
                        ),
                    )
                )
        self.update()

    # --- Exclusão ---

    def confirm_delete(self, bookmark: Bookmark):
        self.bookmark_to_delete = bookmark
        self.dlg_delete = ft.AlertDialog(
            modal=True,
            title=ft.Text("Mover para a lixeira?"),
            content=ft.Text(bookmark.title or bookmark.url),
            actions=[
                ft.TextButton("Cancelar", on_click=self.close_delete_dialog),
                ft.TextButton("Mover", on_click=self.delete_confirmed),
            ],
        )
        self.page_ref.open(self.dlg_delete)

    def close_delete_dialog(self, e=None):
        if self.dlg_delete:
            self.page_ref.close(self.dlg_delete)

    def delete_confirmed(self, e):
        if self.bookmark_to_delete:
            # Registra o tombstone do bookmark (propagado no próximo sync)
            self.trash_repository.move_to_trash(self.bookmark_to_delete, self.repository)
            self.bookmark_to_delete = None
        self.close_delete_dialog()
