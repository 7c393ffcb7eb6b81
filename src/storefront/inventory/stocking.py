"""Stock records — register SKUs and receive physical stock."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory.reservation import load_stock_item
from storefront.inventory.stock import StockItem


@storefront.command(part_of="StockItem")
class RegisterStockItem:
    sku = String(required=True, max_length=50)
    unit_price = Float(required=True)
    on_hand = Integer(default=0)
    title = String(max_length=255)


@storefront.command(part_of="StockItem")
class ReceiveStock:
    sku = String(required=True, max_length=50)
    quantity = Integer(required=True)


@storefront.command_handler(part_of=StockItem)
class StockingHandler:
    @handle(RegisterStockItem)
    def register_stock_item(self, command):
        repo = current_domain.repository_for(StockItem)
        if repo.get_by_sku(command.sku) is not None:
            raise ValidationError({"sku": [f"SKU {command.sku} is already registered"]})

        item = StockItem.register(
            sku=command.sku,
            unit_price=command.unit_price,
            on_hand=command.on_hand or 0,
            title=command.title,
        )
        repo.add(item)
        return str(item.id)

    @handle(ReceiveStock)
    def receive_stock(self, command):
        item = load_stock_item(command.sku)
        item.receive(command.quantity)
        current_domain.repository_for(StockItem).add(item)
        return item.on_hand
