import os
from dotenv import load_dotenv

# Carrega as variáveis do arquivo .env (se existir)
load_dotenv()

# Servidor central (armazenamento remoto)
API_BASE_URL = os.getenv("CLOUD_API_URL", "http://localhost:8000")
TIMEOUT_SECONDS = float(os.getenv("CLOUD_TIMEOUT_SECONDS", "10"))

# Intervalo mínimo entre duas sincronizações automáticas (daily_auto)
AUTO_SYNC_MIN_INTERVAL_HOURS = float(os.getenv("AUTO_SYNC_MIN_INTERVAL_HOURS", "6"))

# Banco local do dispositivo
DATABASE_NAME = os.getenv("LOCAL_DATABASE_NAME", "onetap.db")

# Lixeira: dias até o item deixar de ser restaurável
TRASH_RETENTION_DAYS = int(os.getenv("TRASH_RETENTION_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
