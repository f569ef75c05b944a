from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel


class LoginPayload(BaseModel):
    account: Optional[str] = None
    password: Optional[str] = None


class RegisterPayload(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    userId: Optional[str] = None


class ProfilePayload(BaseModel):
    userId: Optional[str] = None
    avatarUrl: Optional[str] = None


class UserPayload(BaseModel):
    id: Optional[int] = None
    email: Optional[str] = None
    userId: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    managementFee: Optional[float] = None
    ibAccount: Optional[str] = None
    phone: Optional[str] = None
    year: Optional[int] = None
    initialCost: Optional[float] = None


class InitialCostPayload(BaseModel):
    initial_cost: Optional[float] = None


class MonthlyEntry(BaseModel):
    month: int
    interest: Optional[float] = None
    amount: Optional[float] = None


class ProjectPayload(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    avatarUrl: Optional[str] = None
    userIds: Optional[List[int]] = None


class AssignmentPayload(BaseModel):
    userIds: List[int] = []


class MilestonePayload(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    dueDate: Optional[int] = None


class ItemPayload(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[str] = None
    milestoneId: Optional[int] = None
    assigneeId: Optional[int] = None


class CommentPayload(BaseModel):
    content: Optional[str] = None


class OptionPayload(BaseModel):
    id: Optional[int] = None
    status: Optional[str] = None
    operation: Optional[str] = None
    open_date: Optional[int] = None
    to_date: Optional[int] = None
    settlement_date: Optional[int] = None
    quantity: Optional[float] = None
    underlying: Optional[str] = None
    type: Optional[str] = None
    strike_price: Optional[float] = None
    collateral: Optional[float] = None
    premium: Optional[float] = None
    final_profit: Optional[float] = None
    profit_percent: Optional[float] = None
    delta: Optional[float] = None
    iv: Optional[float] = None
    capital_efficiency: Optional[float] = None
    user_id: Optional[str] = None
    owner_id: Optional[int] = None
    year: Optional[int] = None


class OptionImport(BaseModel):
    options: Any = None


class StockTradePayload(BaseModel):
    symbol: Optional[str] = None
    status: Optional[str] = None
    open_date: Optional[int] = None
    close_date: Optional[int] = None
    open_price: Optional[float] = None
    close_price: Optional[float] = None
    quantity: Optional[float] = None
    user_id: Optional[str] = None
    owner_id: Optional[int] = None
    year: Optional[int] = None


class DepositPayload(BaseModel):
    deposit_date: Optional[int] = None
    user_id: Optional[int] = None
    amount: Optional[float] = None
    note: Optional[str] = None
    deposit_type: Optional[str] = None
    transaction_type: Optional[str] = None


class DepositImport(BaseModel):
    deposits: Any = None


class NetEquityPayload(BaseModel):
    user_id: Optional[int] = None
    date: Optional[Union[int, str]] = None
    net_equity: Optional[float] = None
    cash_balance: Optional[float] = None
    management_fee: Optional[float] = None
    interest: Optional[float] = None


class MarketPricePayload(BaseModel):
    symbol: Optional[str] = None
    date: Optional[int] = None
    price: Optional[float] = None


class BulkPricesPayload(BaseModel):
    rows: List[Dict[str, Any]] = []


class FillGapsPayload(BaseModel):
    symbol: str = "QQQ"
