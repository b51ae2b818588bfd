"""
渠道集成路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status

from reservation_sync.exceptions import (
    SourceNotFoundError, SourceInactiveError, SourceTransportError, SyncInProgressError
)
from reservation_sync.models.ontology import SourceConfig
from reservation_sync.models.schemas import (
    SourceConfigCreate, SourceConfigResponse, SyncResult, ConnectionTestResult,
    IntegrationStatus, SyncLogResponse
)
from reservation_sync.services.sync_orchestrator import SyncOrchestrator

router = APIRouter(prefix="/integrations", tags=["渠道集成"])


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """依赖注入：获取应用级同步编排器"""
    return request.app.state.orchestrator


def _to_response(config: SourceConfig) -> SourceConfigResponse:
    """配置响应，不返回密钥"""
    return SourceConfigResponse(
        id=config.id,
        name=config.name,
        kind=config.kind,
        endpoint=config.endpoint,
        version=config.version,
        is_active=config.is_active,
        settings=config.settings or {},
        has_credentials=bool(config.api_key or config.secret_key),
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


@router.get("/sources", response_model=List[SourceConfigResponse])
def list_sources(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """获取渠道配置列表"""
    return [_to_response(c) for c in orchestrator.list_configs()]


@router.post("/sources", response_model=SourceConfigResponse)
def setup_source(data: SourceConfigCreate, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """新建或更新渠道配置"""
    return _to_response(orchestrator.setup_source_config(data))


@router.post("/sources/reload")
def reload_sources(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """重新加载渠道配置"""
    count = orchestrator.refresh_configurations()
    return {"message": f"已加载 {count} 个渠道配置", "count": count}


@router.post("/sources/{source_name}/sync", response_model=SyncResult)
def sync_source(source_name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """立即同步一个渠道"""
    try:
        return orchestrator.sync_source(source_name)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SourceInactiveError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SourceTransportError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/sources/{source_name}/test", response_model=ConnectionTestResult)
def test_connection(source_name: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """测试渠道连通性"""
    try:
        return orchestrator.test_connection(source_name)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/status", response_model=IntegrationStatus)
def integration_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """集成总体状态"""
    return orchestrator.get_integration_status()


@router.get("/sync-logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    source_name: Optional[str] = None,
    limit: int = 50,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """最近的同步日志"""
    return orchestrator.list_sync_logs(source_name=source_name, limit=min(max(limit, 1), 500))
