from __future__ import annotations

from typing import Dict, List, Optional

from shopsim.driver import Observer
from shopsim.engine import DayEngine, EngineConfig
from shopsim.models import (
    INSTALLMENT_DEFERRED,
    INSTALLMENT_FINAL_PAID,
    INSTALLMENT_PAID,
    OFFER_DECLINED_DEBT,
    OFFER_DECLINED_FUNDS,
    OFFER_INSTALLMENTS,
    OFFER_PAID,
    DaySummary,
    Offer,
    SimulationState,
)


def format_money(x: float) -> str:
    return f"{x:,.2f}"


def summarize_run(summaries: List[DaySummary]) -> Dict[str, float]:
    """Totals over a run: income, units sold/lost, lots bought, days in the red."""

    out = {
        "days": float(len(summaries)),
        "income": 0.0,
        "sold": 0.0,
        "lost": 0.0,
        "lots_received": 0.0,
        "insolvent_days": 0.0,
        "deferred_installments": 0.0,
    }
    for sr in summaries:
        out["income"] += sr.income
        out["sold"] += sr.sold
        out["lost"] += sr.lost
        if sr.offer_accepted():
            out["lots_received"] += 1
        if sr.insolvent:
            out["insolvent_days"] += 1
        if sr.installment_outcome == INSTALLMENT_DEFERRED:
            out["deferred_installments"] += 1
    return out


def print_state(state: SimulationState, cfg: EngineConfig, offer: Optional[Offer] = None) -> None:
    offer = offer or state.pending_offer
    print("\n========================================")
    print(f"           第 {state.day + 1} 天 / 共 {cfg.simulation_days} 天")
    print("========================================")
    print(f"账户余额:         {format_money(state.account)}")
    print(f"基地仓库存:       {state.basic_store_stock:.2f}")
    print(f"门店库存:         {state.shop_store_stock:.2f}")
    print(f"当前售价:         {format_money(state.retail_price)}")
    if offer.volume > 0:
        print("\n--- 批发报价 ---")
        print(f"批量: {offer.volume:.0f}  单价: {format_money(offer.unit_price)}  总价: {format_money(offer.total_cost())}")
    debt = state.debt
    if debt.is_open():
        print(f"分期欠款: {format_money(debt.outstanding_amount)}  剩余期数: {debt.installments_remaining}  每期: {format_money(debt.installment_amount)}")
    else:
        print("无分期欠款。")
    print("----------------------------------------")


_OFFER_TEXT = {
    OFFER_PAID: "已全款购入批发货",
    OFFER_INSTALLMENTS: "已分期购入批发货",
    OFFER_DECLINED_FUNDS: "资金不足，批发货未购入",
    OFFER_DECLINED_DEBT: "尚有分期未结清，批发货未购入",
}


def print_day_summary(sr: DaySummary) -> None:
    print(f"\n=== 第 {sr.day} 天（日结）===")
    if sr.offer_refreshed:
        print(f"新批发报价: {sr.offer.volume:.0f} 件 @ {format_money(sr.offer.unit_price)}")
    if sr.transfer_volume > 0:
        print(f"调拨到门店: {sr.transfer_volume:.2f}")
    text = _OFFER_TEXT.get(sr.offer_outcome)
    if text:
        print(text + (f"，支付 {format_money(sr.offer_payment)}" if sr.offer_payment else ""))
    if sr.received_volume > 0:
        print(f"到货: {sr.received_volume:.0f} 件")
    print(
        "  ".join(
            [
                f"售价 {format_money(sr.retail_price)}",
                f"需求 {sr.demand:.2f}",
                f"售出 {sr.sold:.2f}",
                f"缺货损失 {sr.lost:.2f}",
            ]
        )
    )
    print(f"收入 {format_money(sr.income)}  固定支出 {format_money(sr.daily_expense_total)}")
    if sr.installment_outcome == INSTALLMENT_PAID:
        print(f"已还分期: {format_money(sr.installment_paid)}")
    elif sr.installment_outcome == INSTALLMENT_FINAL_PAID:
        print(f"已还清最后一期: {format_money(sr.installment_paid)}")
    elif sr.installment_outcome == INSTALLMENT_DEFERRED:
        print("余额不足，本期分期顺延。")
    if sr.state is not None:
        print(f"账户余额: {format_money(sr.state.account)}")
    if sr.insolvent:
        print("警告：账户已为负！")


def print_final_report(state: SimulationState, summaries: List[DaySummary]) -> None:
    totals = summarize_run(summaries)
    print("\n=======================================")
    print("       模拟结束")
    print("=======================================")
    print(f"最终余额: {format_money(state.account)}")
    print(f"基地仓剩余: {state.basic_store_stock:.2f}  门店剩余: {state.shop_store_stock:.2f}")
    if summaries:
        print(f"累计收入: {format_money(totals['income'])}  售出: {totals['sold']:.2f}  缺货损失: {totals['lost']:.2f}")
        print(f"购入批发货: {int(totals['lots_received'])} 次  负余额天数: {int(totals['insolvent_days'])}")
    if state.debt.is_open():
        print(f"尚欠分期: {format_money(state.debt.outstanding_amount)}")
    else:
        print("无欠款。")
    print("=======================================")


class ConsoleObserver(Observer):
    def __init__(self, engine: DayEngine, quiet: bool = False) -> None:
        self.engine = engine
        self.quiet = quiet
        self.summaries: List[DaySummary] = []

    def on_day_start(self, state: SimulationState) -> None:
        if not self.quiet:
            print_state(state, self.engine.cfg, offer=self.engine.upcoming_offer(state))

    def on_day_end(self, summary: DaySummary) -> None:
        self.summaries.append(summary)
        if not self.quiet:
            print_day_summary(summary)

    def on_finish(self, state: SimulationState) -> None:
        print_final_report(state, self.summaries)
