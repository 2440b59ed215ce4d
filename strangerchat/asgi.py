"""
ASGI config for strangerchat project.

It exposes the ASGI callable as a module-level variable named ``application``.

For more information on this file, see
https://docs.djangoproject.com/en/4.2/howto/deployment/asgi/
"""

# 필수 모듈 가져오기 (운영체제와 장고 초기화용)
import logging
import os

import django

# 장고 설정 파일 위치를 알려주고,
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "strangerchat.settings")
# 장고를 사용할 수 있도록 준비시킴
django.setup()

from channels.routing import ProtocolTypeRouter, URLRouter  # 요청 타입에 따라 분기해주는 애, 라우터
from django.conf import settings
from django.core.asgi import get_asgi_application

# 웹소켓 주소 모음
from strangerchat.apps.chat_app.matching import Matchmaker
from strangerchat.apps.chat_app.routing import websocket_urlpatterns

logger = logging.getLogger("strangerchat.asgi")

django_app = get_asgi_application()

application = ProtocolTypeRouter({
    # 일반 HTTP 요청은 Django 기본 처리기로 보냄 (/api/status/ 등)
    "http": django_app,
    # 웹소켓 요청은 주소를 보고 ChatConsumer 로 보냄
    "websocket": URLRouter(websocket_urlpatterns),
})

# 서버 프로세스마다 매칭 루프 하나 (lock 으로 서로 직렬화됨)
if settings.STRANGERCHAT_EMBEDDED_MATCHMAKER:
    matchmaker = Matchmaker(name=f"matchmaker-{os.getpid()}")
    matchmaker.start()
    logger.info("✅ [ASGI] Application loaded with embedded matchmaker")
else:
    logger.info("✅ [ASGI] Application loaded")
