"""
CLI entry point for the ACD stablecoin economy simulation.

Usage:
    python run_simulation.py --days 180 --borrowers 25 --seed 7
"""

import argparse
import json
import logging
import time
from dataclasses import replace
from pathlib import Path

import numpy as np
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

from config.params import load_config
from models.abm.engine import build_engine


def _json_default(obj):
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.floating, np.integer)):
        return obj.item()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def build_params(args: argparse.Namespace) -> dict:
    """Environment-derived config with CLI flags layered on top."""
    params = load_config()
    sim_updates = {}
    if args.days is not None:
        sim_updates["n_days"] = args.days
    if args.borrowers is not None:
        sim_updates["n_borrowers"] = args.borrowers
    if args.seed is not None:
        sim_updates["seed"] = args.seed
    if args.steps_per_day is not None:
        if args.steps_per_day <= 0:
            raise ValueError("--steps-per-day must be positive")
        sim_updates["time_step_seconds"] = 24 * 60 * 60 // args.steps_per_day
    if sim_updates:
        params["sim_config"] = replace(params["sim_config"], **sim_updates)
    if args.interest_rate is not None:
        params["market"] = replace(params["market"], market_loan_interest_rate=args.interest_rate)
    if args.eth_vol is not None:
        params["exchange"] = replace(params["exchange"], eth_annual_vol=args.eth_vol)
    return params


def summarize(result) -> dict:
    m = result.metrics
    last = {name: float(values[-1]) for name, values in m.items() if values.size}
    return {
        "n_steps": result.n_steps,
        "loans_taken": result.loans_taken,
        "loans_repaid": result.loans_repaid,
        "loans_defaulted": result.loans_defaulted,
        "final": last,
        "pools": result.final_snapshot["pools"],
        "warnings": result.warnings,
    }


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="ACD stablecoin economy: loans, defaults and borrower behaviour"
    )
    parser.add_argument("--days", type=int, default=None,
                        help="Simulated days (default: ACD_SIM_N_DAYS or 365)")
    parser.add_argument("--borrowers", type=int, default=None,
                        help="Number of basic borrowers (default: ACD_SIM_N_BORROWERS or 10)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed (default: ACD_SIM_SEED or 42)")
    parser.add_argument("--steps-per-day", type=int, default=None,
                        help="Ticks per simulated day; must divide 86400 (default: 6)")
    parser.add_argument("--interest-rate", type=float, default=None,
                        help="Market loan interest rate p.a. (default: 0.14)")
    parser.add_argument("--eth-vol", type=float, default=None,
                        help="Annualized ETH volatility for the rate feed (default: 0.0)")
    parser.add_argument("--json", action="store_true",
                        help="Output raw JSON instead of formatted text")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: WARNING)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    params = build_params(args)
    sim_config = params["sim_config"]

    t0 = time.time()
    engine = build_engine(params)
    result = engine.run(sim_config.n_steps)
    elapsed = time.time() - t0

    summary = summarize(result)
    if args.json:
        print(json.dumps(summary, indent=2, default=_json_default))
        return summary

    final = summary["final"]
    pools = summary["pools"]
    print("=" * 60)
    print("  ACD ECONOMY SIMULATION")
    print("=" * 60)
    print(f"  Days:                  {sim_config.n_days}"
          f" ({sim_config.n_steps} ticks, {sim_config.steps_per_day}/day)")
    print(f"  Borrowers:             {sim_config.n_borrowers}")
    print(f"  Seed:                  {sim_config.seed}")
    print()

    print("LOANS")
    print("-" * 40)
    print(f"  Taken:                 {summary['loans_taken']}")
    print(f"  Repaid:                {summary['loans_repaid']}")
    print(f"  Defaulted:             {summary['loans_defaulted']}")
    print()

    print("LEDGER (final)")
    print("-" * 40)
    print(f"  Total ACD:             {final.get('total_acd', 0.0):,.2f}")
    print(f"  Open Loans:            {pools['open_loans_acd']:,.2f} ACD")
    print(f"  Defaulted Loans:       {pools['defaulted_loans_acd']:,.2f} ACD")
    print(f"  Collateral Held:       {pools['collateral_held']:,.4f} ETH")
    print(f"  Interest Holding:      {pools['interest_holding_pool']:,.2f} ACD")
    print(f"  Interest Earned:       {pools['interest_earned_pool']:,.2f} ACD")
    print(f"  Reserve:               {final.get('reserve_acd', 0.0):,.2f} ACD"
          f" / {final.get('reserve_eth', 0.0):,.4f} ETH")
    print(f"  Net ACD Demand:        {final.get('net_acd_demand', 0.0):,.2f} ACD")
    print(f"  ETH Price:             {final.get('eth_price_acd', 0.0):,.4f} ACD")
    print()

    for warning in summary["warnings"]:
        print(f"  WARNING: {warning}")
    print(f"Completed in {elapsed:.2f}s")
    return summary


if __name__ == "__main__":
    main()
