from channels.layers import get_channel_layer
from django.db import connections
from django.http import JsonResponse


def healthz(request):
    layer = get_channel_layer()
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return JsonResponse({
            'ok': True,
            'db': bool(row and row[0] == 1),
            'channelLayer': type(layer).__name__ if layer is not None else None,
        })
    except Exception as e:
        return JsonResponse({'ok': False, 'error': str(e)}, status=500)
