from typing import Optional

from context import RequestContext
from rpc import Router
from schemas import (
    AuthOut,
    EntityIdIn,
    LoginIn,
    PublicUser,
    RegisterIn,
    TransactionAck,
    TransactionFilterIn,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdateIn,
)
from services import CredentialService, TransactionService

auth_router = Router("auth")
transaction_router = Router("transaction")


def _credentials(ctx: RequestContext) -> CredentialService:
    return CredentialService(ctx.session, ctx.tokens)


def _transactions(ctx: RequestContext) -> TransactionService:
    return TransactionService(ctx.session, ctx.user.id)


@auth_router.mutation("register", RegisterIn)
def register(ctx: RequestContext, data: RegisterIn) -> AuthOut:
    return _credentials(ctx).register(data.email, data.password)


@auth_router.mutation("login", LoginIn)
def login(ctx: RequestContext, data: LoginIn) -> AuthOut:
    return _credentials(ctx).login(data.email, data.password)


@auth_router.query("me")
def me(ctx: RequestContext, _data: None) -> Optional[PublicUser]:
    return _credentials(ctx).get_self(ctx.user)


@transaction_router.mutation("add", TransactionIn, protected=True)
def add_transaction(ctx: RequestContext, data: TransactionIn) -> TransactionAck:
    return _transactions(ctx).add(data)


@transaction_router.mutation("update", TransactionUpdateIn, protected=True)
def update_transaction(ctx: RequestContext, data: TransactionUpdateIn) -> TransactionAck:
    return _transactions(ctx).update(data)


@transaction_router.mutation("delete", EntityIdIn, protected=True)
def delete_transaction(ctx: RequestContext, data: EntityIdIn) -> TransactionAck:
    return _transactions(ctx).delete(data.id)


@transaction_router.query("get", EntityIdIn, protected=True)
def get_transaction(ctx: RequestContext, data: EntityIdIn) -> TransactionOut:
    return _transactions(ctx).get(data.id)


@transaction_router.query("list", TransactionFilterIn, protected=True)
def list_transactions(ctx: RequestContext, data: TransactionFilterIn) -> TransactionPage:
    return _transactions(ctx).list(data)


def build_app_router() -> Router:
    router = Router()
    router.include(auth_router)
    router.include(transaction_router)
    return router
