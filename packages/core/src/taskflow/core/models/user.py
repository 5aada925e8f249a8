"""用户目录与通知偏好（只读视图）

用户管理属于外部系统，这里只保留升级经理解析与提醒偏好判断需要的字段。
"""

from pydantic import BaseModel, Field


class DirectoryUser(BaseModel):
    """用户目录条目"""

    user_id: int = Field(description="用户 ID")
    full_name: str = Field(default="", description="姓名")
    email: str | None = Field(default=None, description="邮箱")
    is_manager: bool = Field(default=False, description="是否具有经理角色")
    is_active: bool = Field(default=True, description="是否在职")
    manager_id: int | None = Field(default=None, description="直属经理 ID")


class NotificationPreferences(BaseModel):
    """通知偏好

    没有存储记录的用户按默认值处理（全部开启）。
    """

    user_id: int
    email_enabled: bool = True
    email_follow_up_reminders: bool = True

    def allows_follow_up_reminders(self) -> bool:
        return self.email_enabled and self.email_follow_up_reminders
