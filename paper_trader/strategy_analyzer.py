"""
Post-run strategy analysis and parameter recommendations.

Reads the performance report and trade log of a finished run, breaks each
strategy's trades down by token, entry hour and holding period, and
suggests parameter changes for the next run.
"""
import json
import math
import os
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from paper_trader.config import logger, get_analysis_file, get_report_file, get_trade_log_file
from paper_trader.models import StrategyKind
from paper_trader.utils.logger import load_json, parse_trade_log, save_json

# name, upper bound in hours (exclusive), suggested holding range in hours
HOLDING_BUCKETS = [
    ('under1h', 1, (0.5, 1.0)),
    ('1to4h', 4, (2.0, 4.0)),
    ('4to12h', 12, (6.0, 8.0)),
    ('12to24h', 24, (16.0, 20.0)),
    ('over24h', math.inf, (24.0, 36.0)),
]

PRIORITY_ORDER = {'high': 0, 'medium': 1}


@dataclass(frozen=True)
class Recommendation:
    priority: str
    parameter: str
    message: str
    current_value: Any = None
    suggested_range: Optional[Tuple[float, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'priority': self.priority,
            'parameter': self.parameter,
            'message': self.message,
            'currentValue': self.current_value,
            'suggestedRange': list(self.suggested_range) if self.suggested_range else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Recommendation':
        suggested = data.get('suggestedRange')
        return cls(
            priority=data['priority'],
            parameter=data['parameter'],
            message=data.get('message', ''),
            current_value=data.get('currentValue'),
            suggested_range=tuple(suggested) if suggested else None
        )


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as JSON-safe dictionaries."""
    return json.loads(df.to_json(orient='records'))


def _group_performance(trades: pd.DataFrame, key: str) -> pd.DataFrame:
    perf = trades.groupby(key).agg(
        trades=('PnL', 'size'),
        profitable=('Profitable', 'sum'),
        totalPnl=('PnL', 'sum'),
        avgPnlPercent=('PnLPercent', 'mean')
    )
    perf['unprofitable'] = perf['trades'] - perf['profitable']
    perf['winRate'] = perf['profitable'] / perf['trades']
    return perf


class StrategyAnalyzer:
    """Analyzes a finished run from its report and trade log files."""

    def __init__(self, results_dir: Optional[str] = None, optimizations_dir: Optional[str] = None):
        self.results_dir = results_dir
        self.optimizations_dir = optimizations_dir

    def analyze_performance(self) -> Dict[str, Any]:
        """Analyze every strategy of the last run and save the analysis file."""
        report_path = get_report_file(self.results_dir)
        trade_log_path = get_trade_log_file(self.results_dir)
        for path in (report_path, trade_log_path):
            if not os.path.exists(path):
                raise FileNotFoundError(f"{path} not found. Run paper trading first.")

        logger.info("Analyzing strategy performance...")
        report = load_json(report_path)
        trades = parse_trade_log(trade_log_path)

        strategy_analysis = {
            strategy['name']: self.analyze_strategy_trades(strategy, trades[trades['Strategy'] == strategy['name']])
            for strategy in report['strategies']
        }
        recommendations = self.generate_recommendations(report, strategy_analysis)

        result = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'overallPerformance': {
                key: report.get(key) for key in (
                    'initialBalance', 'finalBalance', 'totalReturnPercent', 'bestStrategy',
                    'worstStrategy', 'systemSharpeRatio', 'maxDrawdown'
                )
            },
            'strategyAnalysis': strategy_analysis,
            'recommendations': {
                name: [r.to_dict() for r in recs] for name, recs in recommendations.items()
            }
        }
        analysis_path = get_analysis_file(self.optimizations_dir)
        save_json(result, analysis_path)
        logger.info(f"Strategy analysis saved to: {analysis_path}")
        return result

    def analyze_strategy_trades(self, strategy: Dict[str, Any], trades: pd.DataFrame) -> Dict[str, Any]:
        if trades.empty:
            return {'tradeCount': 0, 'message': 'No trades executed for this strategy'}

        trades = trades.copy()
        trades['Profitable'] = trades['PnL'] > 0
        trades['EntryHour'] = trades['EntryTime'].dt.hour
        profitable = trades[trades['Profitable']]
        unprofitable = trades[~trades['Profitable']]

        def mean_hours(df: pd.DataFrame) -> float:
            return float(df['HoldingPeriodHours'].mean()) if not df.empty else 0.0

        tokens = _group_performance(trades, 'TokenSymbol').sort_values('totalPnl', ascending=False, kind='mergesort')
        tokens = tokens.rename_axis('symbol').reset_index()
        hours = _group_performance(trades, 'EntryHour').sort_index()
        hours = hours.sort_values('winRate', ascending=False, kind='mergesort').rename_axis('hour').reset_index()

        buckets = {}
        lower = 0.0
        for name, upper, _ in HOLDING_BUCKETS:
            in_bucket = trades[(trades['HoldingPeriodHours'] >= lower) & (trades['HoldingPeriodHours'] < upper)]
            count = len(in_bucket)
            buckets[name] = {
                'trades': count,
                'profitable': int(in_bucket['Profitable'].sum()),
                'totalPnl': float(in_bucket['PnL'].sum()),
                'winRate': float(in_bucket['Profitable'].mean()) if count else 0.0,
                'avgPnl': float(in_bucket['PnL'].mean()) if count else 0.0
            }
            lower = upper

        return {
            'tradeCount': len(trades),
            'profitableTrades': len(profitable),
            'unprofitableTrades': len(unprofitable),
            'winRate': strategy.get('metrics', {}).get('winRate', float(trades['Profitable'].mean())),
            'avgPnlPercent': float(trades['PnLPercent'].mean()),
            'avgHoldingPeriod': mean_hours(trades),
            'avgProfitableHoldingPeriod': mean_hours(profitable),
            'avgUnprofitableHoldingPeriod': mean_hours(unprofitable),
            'bestTokens': _records(tokens.head(3)),
            'worstTokens': _records(tokens.tail(3).iloc[::-1]),
            'bestHours': _records(hours.head(3)),
            'worstHours': _records(hours.tail(3).iloc[::-1]),
            'holdingPeriodAnalysis': buckets,
            'tokenPerformance': _records(tokens)
        }

    def generate_recommendations(self, report: Dict[str, Any],
                                 strategy_analysis: Dict[str, Dict[str, Any]]) -> Dict[str, List[Recommendation]]:
        recommendations = {}
        for strategy in report['strategies']:
            name = strategy['name']
            analysis = strategy_analysis.get(name)
            parameters = strategy.get('parameters', {})
            if not analysis or analysis['tradeCount'] == 0:
                recommendations[name] = [Recommendation(
                    'high', 'general',
                    'Strategy did not execute any trades. Review token discovery criteria and entry signals.'
                )]
                continue

            recs = []
            if analysis['winRate'] < 0.4:
                recs.append(Recommendation(
                    'high', 'entry_signals', 'Low win rate. Consider stricter entry criteria.',
                    f"{analysis['winRate']:.2%}"
                ))

            significant = [
                (bucket, suggested) for bucket, _, suggested in HOLDING_BUCKETS
                if analysis['holdingPeriodAnalysis'][bucket]['trades'] >= 3
            ]
            if significant:
                bucket, suggested = max(
                    significant, key=lambda b: analysis['holdingPeriodAnalysis'][b[0]]['winRate']
                )
                win_rate = analysis['holdingPeriodAnalysis'][bucket]['winRate']
                recs.append(Recommendation(
                    'medium', 'max_holding_period',
                    f"Optimal holding period identified: {bucket} ({win_rate:.2%} win rate)",
                    parameters.get('max_holding_period'), suggested
                ))

            if analysis['bestTokens']:
                symbols = ', '.join(t['symbol'] for t in analysis['bestTokens'])
                recs.append(Recommendation(
                    'medium', 'token_filtering',
                    f"Best performing tokens: {symbols}. Consider focusing on similar tokens."
                ))

            if analysis['bestHours'] and analysis['bestHours'][0]['winRate'] > 0.6:
                hours = ', '.join(f"{h['hour']}:00 UTC ({h['winRate']:.0%})" for h in analysis['bestHours'])
                recs.append(Recommendation('medium', 'trading_hours', f"Best performing hours: {hours}"))

            kind = strategy.get('kind')
            if kind == StrategyKind.MOMENTUM.value:
                if analysis['avgProfitableHoldingPeriod'] < analysis['avgUnprofitableHoldingPeriod']:
                    recs.append(Recommendation(
                        'high', 'trailing_stop_activation',
                        'Profitable trades have shorter holding periods. Consider earlier trailing stop activation.',
                        parameters.get('trailing_stop_activation'), (0.05, 0.08)
                    ))
                if analysis['avgPnlPercent'] < 5:
                    recs.append(Recommendation(
                        'medium', 'min_price_change_1h',
                        'Low average profit. Consider increasing minimum price change requirement.',
                        parameters.get('min_price_change_1h'), (5.0, 7.0)
                    ))
            elif kind == StrategyKind.MEAN_REVERSION.value:
                if analysis['winRate'] < 0.5:
                    recs.append(Recommendation(
                        'high', 'min_price_deviation',
                        'Low win rate. Consider increasing minimum price deviation from moving average.',
                        parameters.get('min_price_deviation'), (0.2, 0.25)
                    ))
                if analysis['avgPnlPercent'] < 3:
                    recs.append(Recommendation(
                        'medium', 'take_profit_percentage',
                        'Low average profit. Consider adjusting profit target.',
                        strategy.get('riskParameters', {}).get('takeProfitPercentage'), (0.08, 0.12)
                    ))

            recommendations[name] = recs
        return recommendations


def apply_recommendations(parameters, recommendations: Sequence[Recommendation]):
    """
    Return a copy of a frozen parameters dataclass with the recommendations applied.

    Only high and medium priority recommendations with a numeric range that
    names a field of `parameters` are used; the new value is the midpoint of
    the range. Timedelta fields take the midpoint in hours.
    """
    names = {f.name for f in fields(parameters)}
    changes = {}
    for rec in sorted(recommendations, key=lambda r: PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER))):
        if rec.priority not in PRIORITY_ORDER or rec.suggested_range is None or rec.parameter not in names:
            continue
        low, high = rec.suggested_range
        value = (low + high) / 2
        current = getattr(parameters, rec.parameter)
        if isinstance(current, timedelta):
            value = timedelta(hours=value)
        elif isinstance(current, int) and not isinstance(current, bool):
            value = int(round(value))
        if value != current:
            logger.info(f"Changing {rec.parameter} from {current} to {value}")
            changes[rec.parameter] = value
    return replace(parameters, **changes) if changes else parameters


def load_recommendations(optimizations_dir: Optional[str] = None) -> Dict[str, List[Recommendation]]:
    """Read recommendations back from a saved analysis file."""
    analysis = load_json(get_analysis_file(optimizations_dir))
    return {
        name: [Recommendation.from_dict(r) for r in recs]
        for name, recs in analysis.get('recommendations', {}).items()
    }
