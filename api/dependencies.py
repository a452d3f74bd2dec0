"""
API依赖项 - 应用服务装配
"""
from fastapi import Depends, Request

from application.ports.payment_gateway import ProcessorGateway
from application.services.order_service import OrderApplicationService
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import get_order_lock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


async def get_gateway(request: Request) -> ProcessorGateway:
    """进程内复用同一个处理方客户端（lifespan 中创建）"""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = get_payment_gateway()
        request.app.state.payment_gateway = gateway
    return gateway


async def get_order_service(gateway: ProcessorGateway = Depends(get_gateway)) -> OrderApplicationService:
    return OrderApplicationService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=gateway,
        locks=get_order_lock(),
    )
