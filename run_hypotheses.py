#!/usr/bin/env python3
"""
Run Hypothesis Tests
====================

Entry point for the preregistered ESM analysis (models M1-M6,
hypotheses H1-H10).

Usage:
    python run_hypotheses.py --data esm.csv               # Run everything
    python run_hypotheses.py --models 1 3                 # Fit selected models
    python run_hypotheses.py --frequentist-only           # Skip MCMC
    python run_hypotheses.py --describe                   # Print hypotheses

Environment:
    ESM_DATA_PATH: Path to the ESM CSV file (optional)
"""
import os
import sys
import argparse

from esm_stats import (
    RunConfig,
    SamplerConfig,
    OptimizerConfig,
    VARIANTS,
    ESMStatsError,
    load_esm_data,
)
from hypotheses import (
    run_all,
    summarize_results,
    HYPOTHESES,
    MODELS,
)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Run ESM Hypothesis Tests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_hypotheses.py --data esm.csv                # All models, all variants
    python run_hypotheses.py --models 5 6 --seed 7         # Selected models
    python run_hypotheses.py --frequentist-only --output results.csv
    python run_hypotheses.py --describe                    # Show all descriptions
        """,
    )
    parser.add_argument(
        "--data",
        default=os.getenv("ESM_DATA_PATH", "esm_data.csv"),
        help="Path to the ESM CSV file",
    )
    parser.add_argument(
        "--models",
        nargs="*",
        type=int,
        choices=list(MODELS.keys()),
        help="Specific models to fit (default: all)",
    )
    parser.add_argument(
        "--frequentist-only",
        action="store_true",
        help="Only run the REML fits (no MCMC)",
    )
    parser.add_argument("--chains", type=int, default=4, help="MCMC chains")
    parser.add_argument("--warmup", type=int, default=1000, help="Warmup iterations per chain")
    parser.add_argument("--iterations", type=int, default=3000, help="Total iterations per chain")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--target-accept", type=float, default=0.95, help="NUTS target acceptance rate")
    parser.add_argument("--max-treedepth", type=int, default=12, help="Maximum NUTS tree depth")
    parser.add_argument(
        "--optimizer",
        nargs="+",
        default=["powell"],
        help="statsmodels optimizer(s) for the REML fits, tried in order",
    )
    parser.add_argument("--maxiter", type=int, default=2000, help="REML optimizer iteration budget")
    parser.add_argument(
        "--check-convergence",
        action="store_true",
        help="Re-emit REML optimizer warnings",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write the results table to this CSV file",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print hypothesis descriptions instead of running",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Minimal output",
    )

    args = parser.parse_args(argv)

    # Describe mode
    if args.describe:
        for h_id, config in HYPOTHESES.items():
            model = f"M{config['model']}" if config["model"] is not None else "n.a."
            print("=" * 70)
            print(f"H{h_id}: {config['name']} [{model}]")
            print("=" * 70)
            print(f"H0: {config['h0']}    H1: {config['h1']}")
            print(config.get("description", "No description available"))
            print()
        return 0

    try:
        run_config = RunConfig(
            seed=args.seed,
            sampler=SamplerConfig(
                chains=args.chains,
                warmup=args.warmup,
                iterations=args.iterations,
                target_accept=args.target_accept,
                max_treedepth=args.max_treedepth,
            ),
            optimizer=OptimizerConfig(
                method=tuple(args.optimizer),
                maxiter=args.maxiter,
                check_convergence=args.check_convergence,
            ),
        )
    except ESMStatsError as e:
        parser.error(str(e))

    variants = ("frequentist",) if args.frequentist_only else VARIANTS

    print("=" * 70)
    print("ESM HYPOTHESIS TESTING")
    print("=" * 70)
    print(f"Data: {args.data}")

    try:
        raw = load_esm_data(args.data)
    except (OSError, ESMStatsError) as e:
        print(f"ERROR: cannot load data: {e}", file=sys.stderr)
        return 1
    print(f"Loaded {len(raw)} rows, {raw['subject'].nunique()} subjects\n")

    out = run_all(
        raw,
        run_config,
        models=args.models or None,
        variants=variants,
        verbose=not args.quiet,
    )

    # Summary table
    print("\n" + "=" * 70)
    print("RESULTS")
    print("=" * 70)
    print(out["table"].to_string())

    if not args.quiet:
        print("\n" + "=" * 70)
        print("DETAILS")
        print("=" * 70)
        print(summarize_results(out["results"]).to_string(index=False))

    if args.output:
        out["table"].to_csv(args.output)
        print(f"\nResults written to {args.output}")

    print("\n" + "=" * 70)
    print("COMPLETE")
    print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
