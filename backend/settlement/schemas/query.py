"""
通用查询相关 Schema
"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Literal


class PaginationParams(BaseModel):
    """
    分页参数

    同时承载游标分页（cursor/limit）与传统分页（page_index/page_size）。
    使用哪种模式由“调用方实际传了哪些字段”决定，见 QueryOptimizer。
    """
    cursor: Optional[Any] = None
    limit: Optional[int] = None
    page_index: Optional[int] = None
    page_size: Optional[int] = None
    sort_field: Optional[str] = None
    sort_order: Optional[Literal["asc", "desc", "ASC", "DESC"]] = None

    @classmethod
    def from_query(cls, **params: Any) -> "PaginationParams":
        """从 URL 查询参数构造；值为 None 的参数视为未传"""
        return cls(**{k: v for k, v in params.items() if v is not None})

    def is_cursor_mode(self) -> bool:
        """显式给了 cursor，或 page_index/page_size 都没给 → 游标分页"""
        provided = self.model_fields_set
        if "cursor" in provided:
            return True
        return "page_index" not in provided and "page_size" not in provided

    def provided(self) -> Dict[str, Any]:
        """调用方实际传入的字段（用于生成缓存键）"""
        return self.model_dump(exclude_unset=True)


class QueryResult(BaseModel):
    """查询结果"""
    data: List[Dict[str, Any]]

    # 传统分页
    total: Optional[int] = None
    page_index: Optional[int] = None
    page_size: Optional[int] = None
    total_pages: Optional[int] = None

    # 游标分页
    has_more: Optional[bool] = None
    next_cursor: Optional[Any] = None
