"""
查询优化器

所有列表类读接口共用：
- 自动选择游标分页 / 传统分页
- 字段投影
- 透明缓存（缓存故障时降级为直接查询）
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from fastapi.encoders import jsonable_encoder
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings
from settlement.schemas.query import PaginationParams, QueryResult
from settlement.services.cache_store import (
    CacheStore,
    clear_table_cache,
    get_or_load,
    make_query_cache_key,
)

logger = logging.getLogger(__name__)


@dataclass
class QueryOptimizerConfig:
    """查询优化配置"""
    enable_cache: bool = True
    cache_timeout: int = 300  # 5分钟
    enable_cursor_pagination: bool = True
    default_page_size: int = 20
    max_page_size: int = 100
    select_fields: Optional[Sequence[str]] = None
    cache_prefix: str = "api_cache"

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "QueryOptimizerConfig":
        config = cls(
            enable_cache=settings.enable_query_cache,
            cache_timeout=settings.cache_ttl,
            enable_cursor_pagination=settings.enable_cursor_pagination,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
            cache_prefix=settings.cache_prefix,
        )
        return replace(config, **overrides)


# 预定义的字段选择
FIELD_SELECTIONS: Dict[str, List[str]] = {
    "COST_SETTLEMENT": [
        "id", "mall_id", "mall_name", "sku_id", "sku_code", "sku_property", "goods_name",
        "product_name", "cost_price",
        "pending_average_price", "pending_sales_volume", "pending_sales_amount",
        "pending_gross_profit", "pending_profit_rate", "pending_updated_time",
        "d30_arrival_average_price", "d30_arrival_sales_volume", "d30_arrival_sales_amount",
        "d30_arrival_gross_profit", "d30_arrival_profit_rate", "arrival_updated_time",
        "updated_time",
    ],
    "PENDING_SETTLEMENT": [
        "id", "mall_id", "mall_name", "region_code", "sku_id", "sku_code", "goods_name",
        "sales_volume", "sales_amount", "currency", "updated_time",
    ],
    "ARRIVAL_DATA": [
        "id", "mall_id", "mall_name", "region_code", "sku_id", "sku_code", "goods_name",
        "accounting_time", "sales_volume", "sales_amount", "currency", "updated_time",
    ],
}

# 过滤条件支持的操作符
_OPERATORS = {
    "eq": lambda col, v: col == v,
    "ne": lambda col, v: col != v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "in": lambda col, v: col.in_(list(v)),
    "not_in": lambda col, v: col.not_in(list(v)),
    "contains": lambda col, v: col.contains(v),
    "is_null": lambda col, v: col.is_(None) if v else col.isnot(None),
}


class QueryOptimizer:
    """优化的查询类"""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheStore] = None,
        config: Optional[QueryOptimizerConfig] = None,
    ):
        self.db = db
        self.cache = cache
        self.config = config or QueryOptimizerConfig()

    def set_select_fields(self, fields: Optional[Sequence[str]]) -> None:
        """设置查询字段"""
        self.config.select_fields = list(fields) if fields else None

    async def query(
        self,
        model,
        where: Optional[Mapping[str, Any]],
        pagination: Union[PaginationParams, Mapping[str, Any], None],
        cache_namespace: str,
        *,
        fields: Optional[Sequence[str]] = None,
        use_cache: Optional[bool] = None,
    ) -> QueryResult:
        """
        执行优化的查询（支持缓存和游标分页）

        Args:
            model: SQLAlchemy 模型
            where: 过滤条件 {列: 值 | [值...] | {操作符: 值}}
            pagination: 分页参数；显式给 cursor 或不给 page_index/page_size 时走游标分页
            cache_namespace: 缓存命名空间（通常为表名，clear_cache 按它通配删除）
            fields: 本次查询的字段投影（不传则用配置里的 select_fields）
            use_cache: 覆盖配置中的 enable_cache
        """
        where = dict(where or {})
        params = self._pagination(pagination)
        projection = list(fields) if fields is not None else (
            list(self.config.select_fields) if self.config.select_fields else None
        )
        # 提前校验，避免非法条件被缓存
        self._build_conditions(model, where)

        async def load() -> QueryResult:
            if params.is_cursor_mode() and self.config.enable_cursor_pagination:
                return await self._cursor_query(model, where, params, projection)
            return await self._offset_query(model, where, params, projection)

        enabled = self.config.enable_cache if use_cache is None else use_cache
        if not enabled:
            return await load()

        key = make_query_cache_key(
            self.config.cache_prefix,
            cache_namespace,
            {
                "table": model.__tablename__,
                "where": jsonable_encoder(where),
                "pagination": jsonable_encoder(params.provided()),
                "fields": projection,
            },
        )
        return await get_or_load(
            self.cache,
            key,
            self.config.cache_timeout,
            load,
            encode=lambda result: result.model_dump_json(),
            decode=QueryResult.model_validate_json,
        )

    async def clear_cache(self, table_name: str) -> int:
        """清除相关缓存"""
        return await clear_table_cache(self.cache, self.config.cache_prefix, table_name)

    # ------------------------------------------------------------------
    # 分页实现
    # ------------------------------------------------------------------

    async def _cursor_query(
        self,
        model,
        where: Dict[str, Any],
        params: PaginationParams,
        projection: Optional[List[str]],
    ) -> QueryResult:
        """
        执行游标分页查询

        按主键排序时游标就是主键值；按其他字段排序时游标是 [排序字段值, 主键] 的 JSON 字符串，
        排序字段为 NULL 的行统一排在最后，保证重复值与 NULL 都不会被跳过。
        """
        limit = self._page_size(params.limit)
        pk = self._primary_key(model)
        sort_column = self._sort_column(model, params.sort_field, pk.name)
        descending = (params.sort_order or "DESC").upper() == "DESC"
        keyset = sort_column.name != pk.name

        conditions = self._build_conditions(model, where)
        if params.cursor is not None:
            if keyset:
                value, last_pk = self._decode_keyset_cursor(sort_column, pk, params.cursor)
                conditions.append(self._keyset_condition(sort_column, pk, value, last_pk, descending))
            else:
                cursor = self._coerce(pk, params.cursor)
                conditions.append(pk < cursor if descending else pk > cursor)

        # 游标分页需要排序字段（和主键）的值来生成 next_cursor
        columns = self._columns(model, projection, extra=list(dict.fromkeys([sort_column.name, pk.name])))
        stmt = select(*columns)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if keyset:
            order = [
                (sort_column.desc() if descending else sort_column.asc()).nulls_last(),
                pk.desc() if descending else pk.asc(),
            ]
        else:
            order = [pk.desc() if descending else pk.asc()]
        # 多查询一条以判断是否还有更多数据
        stmt = stmt.order_by(*order).limit(limit + 1)

        result = await self.db.execute(stmt)
        rows = [dict(row._mapping) for row in result.all()]

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more and rows:
            last = rows[-1]
            if keyset:
                next_cursor = json.dumps(jsonable_encoder([last[sort_column.name], last[pk.name]]))
            else:
                next_cursor = last[pk.name]

        return QueryResult(
            data=jsonable_encoder(rows),
            has_more=has_more,
            next_cursor=jsonable_encoder(next_cursor),
        )

    @classmethod
    def _decode_keyset_cursor(cls, sort_column, pk, cursor: Any):
        if isinstance(cursor, str):
            try:
                cursor = json.loads(cursor)
            except ValueError:
                raise ValueError(f"无效的游标: {cursor}")
        if not isinstance(cursor, (list, tuple)) or len(cursor) != 2 or cursor[1] is None:
            raise ValueError(f"无效的游标: {cursor}")
        value, last_pk = cursor
        if value is not None:
            value = cls._coerce(sort_column, value)
        return value, cls._coerce(pk, last_pk)

    @staticmethod
    def _keyset_condition(sort_column, pk, value: Any, last_pk: Any, descending: bool):
        """(排序字段, 主键) 严格位于游标之后的行；NULL 排在最后"""
        pk_after = pk < last_pk if descending else pk > last_pk
        if value is None:
            return and_(sort_column.is_(None), pk_after)
        value_after = sort_column < value if descending else sort_column > value
        return or_(
            value_after,
            and_(sort_column == value, pk_after),
            sort_column.is_(None),
        )

    async def _offset_query(
        self,
        model,
        where: Dict[str, Any],
        params: PaginationParams,
        projection: Optional[List[str]],
    ) -> QueryResult:
        """执行传统偏移分页查询"""
        page_index = max(params.page_index or 1, 1)
        page_size = self._page_size(params.page_size)
        default_sort = "updated_time" if "updated_time" in model.__table__.c else self._primary_key(model).name
        sort_column = self._sort_column(model, params.sort_field, default_sort)
        descending = (params.sort_order or "DESC").upper() == "DESC"
        offset = (page_index - 1) * page_size

        conditions = self._build_conditions(model, where)

        stmt = select(*self._columns(model, projection))
        if conditions:
            stmt = stmt.where(and_(*conditions))
        # 排序字段可能不唯一，追加主键保证分页稳定
        pk = self._primary_key(model)
        order = [sort_column.desc() if descending else sort_column.asc()]
        if sort_column.name != pk.name:
            order.append(pk.desc() if descending else pk.asc())
        stmt = stmt.order_by(*order).offset(offset).limit(page_size)

        result = await self.db.execute(stmt)
        rows = [dict(row._mapping) for row in result.all()]

        # 获取总数
        count_stmt = select(func.count()).select_from(model)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        return QueryResult(
            data=jsonable_encoder(rows),
            total=total,
            page_index=page_index,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    # ------------------------------------------------------------------
    # 辅助
    # ------------------------------------------------------------------

    @staticmethod
    def _pagination(pagination: Union[PaginationParams, Mapping[str, Any], None]) -> PaginationParams:
        if pagination is None:
            return PaginationParams()
        if isinstance(pagination, PaginationParams):
            return pagination
        return PaginationParams.model_validate(dict(pagination))

    def _page_size(self, requested: Optional[int]) -> int:
        """超过上限静默截断，不报错"""
        if not requested or requested < 1:
            requested = self.config.default_page_size
        return min(requested, self.config.max_page_size)

    @staticmethod
    def _primary_key(model):
        return list(model.__table__.primary_key.columns)[0]

    @staticmethod
    def _sort_column(model, sort_field: Optional[str], default: str):
        table = model.__table__
        if sort_field and sort_field in table.c:
            return table.c[sort_field]
        return table.c[default]

    @staticmethod
    def _columns(model, projection: Optional[List[str]], extra: Sequence[str] = ()):
        table = model.__table__
        if not projection:
            return list(table.c)
        names = list(projection) + [name for name in extra if name not in projection]
        unknown = [name for name in names if name not in table.c]
        if unknown:
            raise ValueError(f"{table.name} 不存在字段: {', '.join(unknown)}")
        return [table.c[name] for name in names]

    @classmethod
    def _build_conditions(cls, model, where: Mapping[str, Any]) -> list:
        table = model.__table__
        conditions = []
        for field, value in where.items():
            if field not in table.c:
                raise ValueError(f"{table.name} 不存在字段: {field}")
            column = table.c[field]
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op not in _OPERATORS:
                        raise ValueError(f"不支持的查询操作符: {op}")
                    conditions.append(_OPERATORS[op](column, cls._coerce_operand(column, op, operand)))
            elif isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_([cls._coerce(column, v) for v in value]))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == cls._coerce(column, value))
        return conditions

    @classmethod
    def _coerce_operand(cls, column, op: str, operand: Any) -> Any:
        if op in ("in", "not_in"):
            return [cls._coerce(column, v) for v in operand]
        if op in ("contains", "is_null"):
            return operand
        return cls._coerce(column, operand)

    @staticmethod
    def _coerce(column, value: Any) -> Any:
        """把（可能来自缓存/URL 的）字符串游标还原成列的 Python 类型"""
        if not isinstance(value, str):
            return value
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value
        if python_type is datetime:
            return datetime.fromisoformat(value)
        if python_type is date:
            return date.fromisoformat(value)
        if python_type in (int, float):
            return python_type(value)
        return value
