from pydantic import BaseModel


class OrderReminderResponse(BaseModel):
    success: bool
    users: int
    orders: int
    reminders_sent: int
    failed: int
    message: str
