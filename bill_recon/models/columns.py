from __future__ import annotations

"""Column labels and category values of the JD bill / settlement exports.

The exports use natural-language (Chinese) header labels; every pipeline
service refers to them through these names only.
"""

# Bill export (订单明细)
ORDER_NUMBER = "订单编号"
DOCUMENT_TYPE = "单据类型"
FEE_ITEM = "费用项"
PRODUCT_CODE = "商品编号"
PRODUCT_NAME = "商品名称"
QUANTITY = "商品数量"

# Settlement export (结算单)
FEE_NAME = "费用名称"
DEFAULT_AMOUNT_COLUMNS: tuple[str, ...] = ("应结金额", "金额", "合计金额", "总金额")

# Document types
DOC_ORDER = "订单"
DOC_CANCEL_REFUND = "取消退款单"
DOC_AFTER_SALES = "售后服务单"
DOC_NON_SALES = "非销售单"

# Fee categories
FEE_DIRECT_SERVICE = "直营服务费"
FEE_PAYMENT = "货款"
FEE_AFTER_SALES_COMPENSATION = "售后卖家赔付费"
FEE_CONSOLIDATED_FREIGHT = "合流共配回收运费"

# Line amount of the bill export, used by the order merge flow
ORDER_AMOUNT = "金额"

REQUIRED_BILL_COLUMNS: tuple[str, ...] = (
    ORDER_NUMBER,
    DOCUMENT_TYPE,
    FEE_ITEM,
    PRODUCT_CODE,
    QUANTITY,
    PRODUCT_NAME,
)

ORDER_MERGE_COLUMNS: tuple[str, ...] = (*REQUIRED_BILL_COLUMNS, ORDER_AMOUNT)

# Priced / merged output labels
OUT_PRODUCT_NAME = "商品名"
OUT_PRODUCT_CODE = "商品编码"
OUT_UNIT_PRICE = "单价"
OUT_QUANTITY = "数量"
OUT_TOTAL = "总价"

# Settlement output labels
OUT_SETTLEMENT_AMOUNT = "应结金额"
OUT_SERVICE_FEE = "直营服务费"
OUT_NET_AMOUNT = "净结金额"

# Columns written as text / as 0.00 numbers on export
PRODUCT_CODE_COLUMNS: tuple[str, ...] = (OUT_PRODUCT_CODE, PRODUCT_CODE)
NUMERIC_COLUMNS: tuple[str, ...] = (
    QUANTITY,
    OUT_QUANTITY,
    OUT_UNIT_PRICE,
    OUT_TOTAL,
    OUT_SETTLEMENT_AMOUNT,
    OUT_SERVICE_FEE,
    OUT_NET_AMOUNT,
)
