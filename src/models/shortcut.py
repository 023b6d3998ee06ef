from typing import List, Optional, assert_never
from enum import Enum
from sqlalchemy import JSON, String
from sqlmodel import Field
from .base import SyncEntity

class ShortcutKind(str, Enum):
    FILE = "file"
    LINK = "link"
    CONTACT = "contact"      # ligação / mensagem (WhatsApp)
    SLIDESHOW = "slideshow"
    TEXT = "text"

class FileType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    DOCUMENT = "document"

class IconType(str, Enum):
    THUMBNAIL = "thumbnail"  # base64, NUNCA vai para a nuvem
    EMOJI = "emoji"
    TEXT = "text"

DORMANT = "dormant"

class Shortcut(SyncEntity, table=True):
    __tablename__ = "shortcuts"

    name: str
    kind: ShortcutKind = Field(default=ShortcutKind.LINK, sa_type=String)

    # Caminho do arquivo ou URL
    content_uri: str = Field(default="")
    file_type: Optional[FileType] = Field(default=None, sa_type=String)
    mime_type: Optional[str] = Field(default=None)

    icon_type: IconType = Field(default=IconType.EMOJI, sa_type=String)
    icon_value: str = Field(default="")
    thumbnail_data: Optional[str] = Field(default=None)

    # Contato / mensagem
    phone_number: Optional[str] = Field(default=None)
    quick_messages: List[str] = Field(default_factory=list, sa_type=JSON)

    # Slideshow
    image_uris: List[str] = Field(default_factory=list, sa_type=JSON)
    auto_advance_interval: Optional[int] = Field(default=None)

    # Texto livre
    text_content: Optional[str] = Field(default=None)

    usage_count: int = Field(default=0)

    # "dormant" quando a referência de arquivo não pode ser resolvida
    sync_state: Optional[str] = Field(default=None)

    @property
    def is_dormant(self) -> bool:
        return self.sync_state == DORMANT

def requires_file_reference(kind: ShortcutKind) -> bool:
    """Tipos que dependem de um binário local (não sincronizado)"""
    match ShortcutKind(kind):
        case ShortcutKind.FILE | ShortcutKind.SLIDESHOW:
            return True
        case ShortcutKind.LINK | ShortcutKind.CONTACT | ShortcutKind.TEXT:
            return False
        case _ as unreachable:
            assert_never(unreachable)

def fallback_emoji(shortcut: Shortcut) -> str:
    match ShortcutKind(shortcut.kind):
        case ShortcutKind.FILE:
            return {
                FileType.IMAGE: "🖼️",
                FileType.VIDEO: "🎬",
                FileType.PDF: "📄",
                FileType.DOCUMENT: "📁",
            }.get(FileType(shortcut.file_type) if shortcut.file_type else None, "📁")
        case ShortcutKind.LINK:
            return "🔗"
        case ShortcutKind.CONTACT:
            return "💬" if shortcut.quick_messages else "📞"
        case ShortcutKind.SLIDESHOW:
            return "🎞️"
        case ShortcutKind.TEXT:
            return "📝"
        case _ as unreachable:
            assert_never(unreachable)

def cloud_icon(shortcut: Shortcut) -> tuple[str, str]:
    """
    Projeção 'cloud-safe' do ícone: thumbnails (binário) viram emoji do tipo.
    Retorna (icon_type, icon_value).
    """
    icon_type = IconType(shortcut.icon_type)
    if icon_type == IconType.THUMBNAIL or not shortcut.icon_value:
        return IconType.EMOJI.value, fallback_emoji(shortcut)
    return icon_type.value, shortcut.icon_value
