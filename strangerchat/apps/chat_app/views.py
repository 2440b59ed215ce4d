import logging

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import matching
from .store import StoreError

logger = logging.getLogger(__name__)


class StatusView(APIView):
    """
    GET /api/status/
    현재 대기/매칭 대기 중인 유저 수를 반환 (랜딩 페이지의 "지금 N명 접속 중" 표시용).
    """

    permission_classes = [permissions.AllowAny]

    def get(self, request):
        try:
            active = matching.active_count()
            queued = matching.queue_length()
        except StoreError:
            # 내부 사정은 노출하지 않고 0 으로 응답
            logger.exception("🚨 [StatusView] could not read counts")
            return Response({"active": 0, "queued": 0}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        response = Response({"active": active, "queued": queued}, status=status.HTTP_200_OK)
        # 새로고침이 몰려도 Redis 를 두드리지 않도록 짧게 캐시
        response["Cache-Control"] = "public, max-age=5, s-maxage=5, stale-while-revalidate=30"
        return response
