import flet as ft
from src.services.auth_service import AuthService

class LoginPage(ft.Container):
    def __init__(self, page: ft.Page, auth_service: AuthService, on_login_success):
        super().__init__()
        self.page_ref = page  # Guardamos referencia como page_ref para evitar conflito
        self.on_login_success = on_login_success
        self.auth_service = auth_service

        self.padding = 30
        self.alignment = ft.alignment.center

        # --- Criação dos Controles ---
        self.txt_email = ft.TextField(
            label="E-mail",
            prefix_icon=ft.Icons.EMAIL,
            autofocus=True,
            on_submit=lambda e: self.txt_pass.focus()
        )
        self.txt_pass = ft.TextField(
            label="Senha",
            password=True,
            can_reveal_password=True,
            prefix_icon=ft.Icons.LOCK,
            on_submit=self.attempt_login
        )

        self.btn_login = ft.ElevatedButton(
            text="Entrar",
            icon=ft.Icons.LOGIN,
            width=200,
            on_click=self.attempt_login
        )
        self.btn_signup = ft.TextButton(
            text="Criar conta",
            on_click=self.attempt_signup
        )

        self.content = ft.Column(
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            alignment=ft.MainAxisAlignment.CENTER,
            width=400,
            controls=[
                ft.Icon(ft.Icons.CLOUD_SYNC, size=80, color=ft.Colors.BLUE_800),
                ft.Text("OneTap", size=30, weight="bold", color=ft.Colors.BLUE_900),
                ft.Text("Backup na nuvem", size=14, color=ft.Colors.GREY_600),
                ft.Divider(height=40, color=ft.Colors.TRANSPARENT),
                self.txt_email,
                self.txt_pass,
                ft.Divider(height=20, color=ft.Colors.TRANSPARENT),
                self.btn_login,
                self.btn_signup,
            ]
        )

    def _credentials(self):
        email = self.txt_email.value
        password = self.txt_pass.value
        if not email or not password:
            self.show_error("Preencha todos os campos.")
            return None
        return email, password

    def _submit(self, action, error_message: str):
        credentials = self._credentials()
        if not credentials:
            return

        self.btn_login.disabled = True
        self.update()

        if action(*credentials):
            self.on_login_success()
        else:
            self.show_error(error_message)
            self.btn_login.disabled = False
            self.update()

    def attempt_login(self, e):
        self._submit(self.auth_service.authenticate, "E-mail ou senha inválidos.")

    def attempt_signup(self, e):
        self._submit(self.auth_service.sign_up, "Não foi possível criar a conta.")

    def show_error(self, msg):
        self.page_ref.open(ft.SnackBar(content=ft.Text(msg), bgcolor=ft.Colors.RED_600))
