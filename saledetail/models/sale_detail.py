from tortoise import fields, models


class SaleDetail(models.Model):
    """A line item of a sale. Rows are soft-deleted, never removed."""
    id = fields.IntField(primary_key=True)
    # Issued by the Sales service; numeric ids and UUIDs both occur
    sale_id = fields.CharField(max_length=64)
    medicine_id = fields.IntField()
    quantity = fields.IntField()
    unit_price = fields.DecimalField(max_digits=12, decimal_places=2)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    description = fields.CharField(max_length=200, default="")
    is_deleted = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(null=True)
    created_by = fields.IntField(null=True)
    updated_by = fields.IntField(null=True)

    class Meta:
        table = "sale_details"
        indexes = [
            ("sale_id",),                # Details of one sale
            ("is_deleted",),             # Filter live rows
            ("sale_id", "is_deleted"),   # Composite: live details of a sale
        ]
