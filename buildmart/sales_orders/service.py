from __future__ import annotations

import logging
import math
import uuid

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from buildmart import events
from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.crm.models import Client
from buildmart.metrics import observe_stock_movement
from buildmart.products.models import Product
from buildmart.products.service import record_stock_movement
from buildmart.quotations.models import Quotation
from buildmart.sales_orders.models import SalesOrder, SalesOrderItem
from buildmart.sales_orders.schemas import (
    SalesOrderFromQuotation,
    SalesOrderListResponse,
    SalesOrderRead,
    SalesOrderStatusUpdate,
)


logger = logging.getLogger("buildmart.sales_orders")


class SalesOrderService:
    sortable_columns = {
        "createdAt": SalesOrder.created_at,
        "updatedAt": SalesOrder.updated_at,
        "status": SalesOrder.status,
        "deliveryDate": SalesOrder.delivery_date,
    }

    def create_from_quotation(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        quotation_id: uuid.UUID,
        dto: SalesOrderFromQuotation,
    ) -> SalesOrderRead:
        """Turn an accepted quotation into an order and take its items out of stock.

        Stock may go negative; over-selling is reported through the log rather
        than blocked.
        """
        quotation = session.scalar(
            select(Quotation).options(selectinload(Quotation.items)).where(Quotation.id == quotation_id)
        )
        if quotation is None:
            raise NotFoundError("quotation not found")
        if quotation.status != "Accepted":
            raise ConflictError(
                "only accepted quotations can be converted to a sales order",
                details={"status": quotation.status},
            )
        if quotation.client_id is None:
            raise ValidationFailedError("sales order creation failed: quotation has no client")
        missing = [str(item.id) for item in quotation.items if item.product_id is None]
        if missing:
            raise ValidationFailedError(
                "every quotation item must reference a product",
                details={"quotation_item_ids": missing},
            )

        order = SalesOrder(
            client_id=quotation.client_id,
            quote_reference_id=quotation.id,
            status="Pending",
            delivery_date=dto.delivery_date,
            delivery_address=dto.delivery_address,
            payment_terms=dto.payment_terms,
            created_by_id=actor_user_id,
            items=[
                SalesOrderItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.line_total,
                )
                for item in quotation.items
            ],
        )
        session.add(order)
        session.flush()

        for item in quotation.items:
            product = session.get(Product, item.product_id)
            if product is None:
                raise ValidationFailedError("product not found", details={"product_id": str(item.product_id)})
            product.quantity_on_hand -= item.quantity
            if product.quantity_on_hand < 0:
                logger.warning(
                    "product.stock_negative",
                    extra={"entity_id": str(product.id), "count": product.quantity_on_hand},
                )
            record_stock_movement(
                session,
                product,
                movement_type="OUT",
                quantity=item.quantity,
                reason=f"Sales Order {order.id}",
                user_id=actor_user_id,
            )

        quotation.status = "Converted"
        session.commit()

        observe_stock_movement("OUT", len(quotation.items))
        logger.info(
            "sales_order.created",
            extra={"sales_order_id": str(order.id), "quotation_id": str(quotation.id), "count": len(quotation.items)},
        )
        events.publish(
            "sales_order.created",
            {"sales_order_id": str(order.id), "quotation_id": str(quotation.id)},
            actor_user_id=str(actor_user_id),
        )
        return self.get_sales_order(session, order.id)

    def list_sales_orders(
        self,
        session: Session,
        *,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: str | None = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> SalesOrderListResponse:
        stmt: Select[tuple[SalesOrder]] = select(SalesOrder)
        if status:
            stmt = stmt.where(SalesOrder.status == status)
        if search:
            term = search.strip()
            predicates = [SalesOrder.client_id.in_(select(Client.id).where(Client.client_name.ilike(f"%{term}%")))]
            try:
                predicates.append(SalesOrder.id == uuid.UUID(term))
            except ValueError:
                pass
            stmt = stmt.where(or_(*predicates))

        total = int(session.scalar(select(func.count()).select_from(stmt.subquery())) or 0)

        descending = sort_order.lower() != "asc"
        if sort_by == "client":
            stmt = stmt.join(Client, Client.id == SalesOrder.client_id)
            column = Client.client_name
        else:
            column = self.sortable_columns.get(sort_by, SalesOrder.created_at)
        rows = session.scalars(
            stmt.options(selectinload(SalesOrder.client), selectinload(SalesOrder.items))
            .order_by(column.desc() if descending else column.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return SalesOrderListResponse(
            orders=[SalesOrderRead.model_validate(row) for row in rows],
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    def get_sales_order(self, session: Session, sales_order_id: uuid.UUID) -> SalesOrderRead:
        return SalesOrderRead.model_validate(self._get_sales_order(session, sales_order_id))

    def update_status(
        self,
        session: Session,
        sales_order_id: uuid.UUID,
        dto: SalesOrderStatusUpdate,
    ) -> SalesOrderRead:
        order = self._get_sales_order(session, sales_order_id)
        old_status = order.status
        order.status = dto.status
        session.commit()
        logger.info(
            "sales_order.status_changed",
            extra={"sales_order_id": str(order.id), "old_status": old_status, "new_status": dto.status},
        )
        return self.get_sales_order(session, order.id)

    def _get_sales_order(self, session: Session, sales_order_id: uuid.UUID) -> SalesOrder:
        order = session.scalar(
            select(SalesOrder)
            .options(selectinload(SalesOrder.client), selectinload(SalesOrder.items))
            .where(SalesOrder.id == sales_order_id)
        )
        if order is None:
            raise NotFoundError("sales order not found")
        return order


sales_order_service = SalesOrderService()
