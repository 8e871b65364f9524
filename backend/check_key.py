import requests

import config
from config import SettingsStore

API_KEY = SettingsStore().get_api_key()

if not API_KEY:
    print("❌ API ключ не найден: задай ASSEMBLYAI_API_KEY в .env или через PUT /api/settings/api-key")
    raise SystemExit(1)

print("=" * 50)
print(f"Ключ: {API_KEY[:4]}...{API_KEY[-4:]}")
print(f"Длина ключа: {len(API_KEY)} символов")
print(f"API: {config.ASSEMBLYAI_API_BASE}")
print("=" * 50)

# Тест подключения к AssemblyAI: список последних транскриптов
try:
    response = requests.get(
        f"{config.ASSEMBLYAI_API_BASE}/transcript",
        headers={"Authorization": API_KEY},
        params={"limit": 1},
        timeout=10
    )

    print(f"Status Code: {response.status_code}")

    if response.status_code == 200:
        print("✅ УСПЕХ! Ключ работает!")
    elif response.status_code == 401:
        print("❌ ОШИБКА: Неавторизованный доступ")
        print(f"   Ответ: {response.text}")
    else:
        print(f"⚠️  Неожиданный статус: {response.status_code}")
        print(f"   Ответ: {response.text}")

except requests.RequestException as e:
    print(f"❌ Ошибка подключения: {e}")
