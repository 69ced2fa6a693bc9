import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.factu.core.deps import enforce_branch_scope, require_request_context
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.metrics import metrics
from app.factu.db.models import Sale
from app.factu.db.session import get_db
from app.factu.repos.sales import SaleQueryFilters, SaleRepository
from app.factu.schemas.sales import (
    SaleCommitRequest,
    SaleLineResponse,
    SaleListResponse,
    SaleResponse,
    SaleTenderResponse,
)
from app.factu.services.idempotency import IDEMPOTENCY_RESULT_HEADER, IdempotencyService, extract_idempotency_key
from app.factu.services.invoice_types import InvoiceType, TaxCondition, replay_invoice_type
from app.factu.services.money import to_money
from app.factu.services.sale_finalizer import ClientInfo, SaleDraft, SaleFinalizer, receipt_number
from app.factu.services.sale_totals import make_line_item
from app.factu.services.tender_ledger import TenderLedger, TenderMethod

router = APIRouter()


def _quantity(value: float) -> Decimal:
    return Decimal(str(value))


def _sale_response(repo: SaleRepository, sale: Sale, notices: list[str] | None = None) -> SaleResponse:
    lines = repo.get_lines(sale.id)
    tenders = repo.get_tenders(sale.id)
    return SaleResponse(
        id=str(sale.id),
        branch_id=str(sale.branch_id),
        point_of_sale=sale.point_of_sale,
        user_id=str(sale.user_id) if sale.user_id else None,
        client_name=sale.client_name,
        client_tax_id=sale.client_tax_id,
        client_tax_condition=sale.client_tax_condition,
        invoice_type=sale.invoice_type,
        invoice_family=sale.invoice_family,
        invoice_number=sale.invoice_number,
        receipt_number=receipt_number(sale.point_of_sale, sale.invoice_number),
        subtotal=to_money(sale.subtotal),
        net_total=to_money(sale.net_total),
        vat_total=to_money(sale.vat_total),
        total=to_money(sale.total),
        tendered_total=to_money(sale.tendered_total),
        change_due=to_money(sale.change_due),
        vat_discriminated=sale.invoice_type == InvoiceType.A.value,
        authorization_status=sale.authorization_status,
        authorization_code=sale.authorization_code,
        status=sale.status,
        created_at=sale.created_at,
        lines=[
            SaleLineResponse(
                position=line.position,
                product_id=line.product_id,
                description=line.description,
                quantity=_quantity(line.quantity),
                unit_price=to_money(line.unit_price),
                discount_percent=_quantity(line.discount_percent),
                vat_rate=_quantity(line.vat_rate),
                line_total=to_money(line.line_total),
                net_amount=to_money(line.net_amount),
                vat_amount=to_money(line.vat_amount),
            )
            for line in lines
        ],
        tenders=[
            SaleTenderResponse(
                position=tender.position,
                method=tender.method,
                amount=to_money(tender.amount),
                received=to_money(tender.received) if tender.received is not None else None,
                card_type=tender.card_type,
                external_reference=tender.external_reference,
                requested_amount=to_money(tender.requested_amount) if tender.requested_amount is not None else None,
            )
            for tender in tenders
        ],
        notices=notices or [],
    )


def _build_draft(payload: SaleCommitRequest) -> SaleDraft:
    items = tuple(
        make_line_item(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            discount_percent=item.discount_percent,
            vat_rate=item.vat_rate,
            product_id=item.product_id,
            modifier=item.modifier,
        )
        for item in payload.items
    )
    ledger = TenderLedger()
    for tender in payload.tenders:
        method = TenderMethod(tender.method)
        if method.is_external:
            if not tender.payment_id:
                raise AppError(ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED, details={"method": method.value})
            ledger.add_confirmed_external(method, tender.amount, external_reference=tender.payment_id)
        else:
            ledger.add_tender(method, tender.amount, received=tender.received, card_type=tender.card_type)
    tax_condition = TaxCondition(payload.client.tax_condition)
    state = replay_invoice_type(
        tax_condition,
        ledger.methods,
        InvoiceType(payload.invoice_type) if payload.invoice_type else None,
        fixed_before_tenders=payload.invoice_type_fixed_before_tenders,
    )
    return SaleDraft(
        items=items,
        tenders=ledger.entries,
        invoice_state=state,
        client=ClientInfo(name=payload.client.name, tax_condition=tax_condition, tax_id=payload.client.tax_id),
    )


@router.get("/api/sales", response_model=SaleListResponse)
def list_sales(
    invoice_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    repo = SaleRepository(db)
    rows = repo.list_sales(SaleQueryFilters(branch_id=context.branch_id, invoice_type=invoice_type, limit=limit))
    return SaleListResponse(rows=[_sale_response(repo, sale) for sale in rows])


@router.post("/api/sales", response_model=SaleResponse, status_code=201)
def commit_sale(
    request: Request,
    payload: SaleCommitRequest,
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    idempotency_key = extract_idempotency_key(request.headers, required=True)
    request_hash = IdempotencyService.fingerprint(payload.model_dump(mode="json"))
    idempotency_context, replay = IdempotencyService(db).start(
        branch_id=context.branch_id,
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=request_hash,
    )
    if replay:
        metrics.increment_idempotency_replay()
        return JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={IDEMPOTENCY_RESULT_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = idempotency_context

    draft = _build_draft(payload)
    committed = SaleFinalizer(db).commit(draft, context)
    notices = [draft.invoice_state.notice] if draft.invoice_state.notice else []
    response = _sale_response(SaleRepository(db), committed.sale, notices)
    idempotency_context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    return response


@router.get("/api/sales/{sale_id}", response_model=SaleResponse)
def get_sale(sale_id: str, context=Depends(require_request_context), db=Depends(get_db)):
    try:
        uuid.UUID(sale_id)
    except ValueError as exc:
        raise AppError(ErrorCatalog.SALE_NOT_FOUND, details={"sale_id": sale_id}) from exc
    repo = SaleRepository(db)
    sale = repo.get_by_id(sale_id)
    if sale is None:
        raise AppError(ErrorCatalog.SALE_NOT_FOUND, details={"sale_id": sale_id})
    enforce_branch_scope(context, sale.branch_id)
    return _sale_response(repo, sale)
