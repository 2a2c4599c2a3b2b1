import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from marketplace.infra.metrics import Metrics

router = APIRouter()


def enabled_metrics(request: Request) -> Metrics:
    metrics_client = getattr(request.app.state, "metrics", None)
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return metrics_client


def scrape_authorized(request: Request, metrics_client: Metrics = Depends(enabled_metrics)) -> Metrics:
    expected = request.app.state.app_settings.metrics_token
    if not expected:
        return metrics_client
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    provided = credentials if scheme.lower() == "bearer" else request.query_params.get("token")
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return metrics_client


@router.get("/metrics", include_in_schema=False)
async def metrics_endpoint(metrics_client: Metrics = Depends(scrape_authorized)) -> Response:
    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)
