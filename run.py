#!/usr/bin/env python3
"""
Unified test and benchmark runner for strmatch.

Orchestrates:
1. Loading input lines (inline lists, YAML files, or HuggingFace datasets)
2. Compiling each configured pattern and generating its specialized matcher
3. Running tests (interpreted vs generated vs `re` agreement) or benchmarks
   (timing of the same three matchers)

Usage:
    python run.py test                    # Run all tests
    python run.py test -n http_get        # Test specific pattern
    python run.py bench                   # Run all benchmarks
    python run.py bench -n http_get       # Benchmark specific pattern
    python run.py bench --iterations 100  # More iterations
"""

import argparse
import io
import json
import re
import sys
import time
import yaml
from pathlib import Path

from strmatch import CompileError, compile_pattern

# Ensure UTF-8 output on Windows
if sys.platform == 'win32':
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

# Paths
ROOT_DIR = Path(__file__).parent

# Cache for loaded inputs to avoid re-downloading
_input_cache: dict[str, list[bytes]] = {}


# =============================================================================
# Input Loading
# =============================================================================

def load_hf_dataset(input_config: dict, input_name: str) -> list[str]:
    """Load lines from a HuggingFace dataset.

    Each entry of the configured field is split into lines; blank lines are
    dropped. ``max_samples`` limits the number of lines kept.

    Args:
        input_config: Configuration dict with dataset, subset, split, field, max_samples
        input_name: Name of this input (for logging)

    Returns:
        List of text lines
    """
    try:
        from datasets import load_dataset
    except ImportError:
        print("Error: 'datasets' library not installed. Install with: pip install datasets",
              file=sys.stderr)
        sys.exit(1)

    dataset_name = input_config["dataset"]
    subset = input_config.get("subset")
    split = input_config.get("split", "train")
    field = input_config.get("field", "text")
    max_samples = input_config.get("max_samples")

    # Build dataset identifier for logging
    dataset_id = f"{dataset_name}"
    if subset:
        dataset_id += f"/{subset}"
    dataset_id += f" ({split} split)"

    print(f"Loading HuggingFace dataset: {dataset_id}...")

    try:
        if subset:
            dataset = load_dataset(dataset_name, subset, split=split)
        else:
            dataset = load_dataset(dataset_name, split=split)
    except Exception as e:
        print(f"Error loading dataset '{dataset_id}': {e}", file=sys.stderr)
        return []

    lines = []
    for item in dataset:
        for line in (item.get(field) or "").splitlines():
            if line.strip():
                lines.append(line)
        if max_samples and len(lines) >= max_samples:
            lines = lines[:max_samples]
            break

    print(f"Using {len(lines)} lines from field '{field}' of '{input_name}'")
    return lines


def load_input(input_config: dict, input_name: str, base_dir: Path) -> list[bytes]:
    """Load one configured input as a list of UTF-8 encoded samples.

    Three sources are supported:
        lines:   inline list of strings
        file:    YAML file holding a top-level list of strings
        dataset: HuggingFace dataset (see load_hf_dataset)
    """
    # Check cache first
    if input_name in _input_cache:
        print(f"Using cached input: {input_name}")
        return _input_cache[input_name]

    if "lines" in input_config:
        lines = input_config["lines"] or []
    elif "file" in input_config:
        input_file = base_dir / input_config["file"]
        if not input_file.exists():
            print(f"Error: Input file not found: {input_file}", file=sys.stderr)
            return []
        with open(input_file, encoding='utf-8') as f:
            lines = yaml.safe_load(f)
        if not isinstance(lines, list):
            print(f"Error: Expected list in {input_file}, got {type(lines)}", file=sys.stderr)
            return []
    elif "dataset" in input_config:
        lines = load_hf_dataset(input_config, input_name)
    else:
        print(f"Error: Input '{input_name}' needs one of 'lines', 'file' or 'dataset'",
              file=sys.stderr)
        return []

    samples = [str(line).encode('utf-8') for line in lines]
    _input_cache[input_name] = samples
    return samples


# =============================================================================
# Matchers
# =============================================================================

def _owned(result) -> dict | None:
    """Normalize a capture mapping to {name: bytes} for comparison."""
    if result is None:
        return None
    return {k: bytes([v]) if isinstance(v, int) else bytes(v) for k, v in result.items()}


def _regex_result(regex: re.Pattern, data: bytes) -> dict | None:
    m = regex.fullmatch(data)
    if m is None:
        return None
    return m.groupdict()


def build_matchers(name: str, pattern: str, re_pattern: str | None):
    """Compile the pattern three ways: interpreted, generated, and `re`."""
    compiled = compile_pattern(pattern)
    generated = compiled.specialize(name if name.isidentifier() else "pattern")
    regex = re.compile(re_pattern.encode('utf-8'), re.DOTALL) if re_pattern else None
    return compiled, generated, regex


def run_correctness(compiled, generated, regex, samples: list[bytes], verbose: bool) -> dict:
    """Check that all matchers agree on every sample."""
    results = []
    mismatches = 0
    matched = 0

    for data in samples:
        interpreted = _owned(compiled.apply(data))
        gen = _owned(generated(data))
        ref = _regex_result(regex, data) if regex is not None else interpreted
        ok = interpreted == gen == ref
        if interpreted is not None:
            matched += 1
        if not ok:
            mismatches += 1
            print(f"\n=== MISMATCH ===")
            print(f"Input:       {data!r}")
            print(f"Interpreted: {interpreted}")
            print(f"Generated:   {gen}")
            print(f"re:          {ref}")
        elif verbose:
            print(f"[OK] {data[:60]!r} -> {interpreted}")
        results.append({"input": data.decode('utf-8', errors='replace'), "ok": ok})

    return {
        "results": results,
        "summary": {
            "samples": len(samples),
            "matched": matched,
            "mismatches": mismatches,
            "all_passed": mismatches == 0,
        },
    }


def _time_ms(fn, samples: list[bytes], iterations: int) -> float:
    start = time.perf_counter()
    for _ in range(iterations):
        for data in samples:
            fn(data)
    return (time.perf_counter() - start) * 1000.0


def run_benchmark(compiled, generated, regex, samples: list[bytes], iterations: int) -> dict:
    """Time each matcher over all samples."""
    interpreted_ms = _time_ms(compiled.apply, samples, iterations)
    generated_ms = _time_ms(generated, samples, iterations)
    summary = {
        "samples": len(samples),
        "iterations": iterations,
        "matched": sum(compiled.matches(d) for d in samples),
        "total_interpreted_ms": interpreted_ms,
        "total_generated_ms": generated_ms,
    }
    if regex is not None:
        re_ms = _time_ms(regex.fullmatch, samples, iterations)
        summary["total_re_ms"] = re_ms
        if generated_ms > 0:
            summary["speedup_vs_re"] = re_ms / generated_ms
    if generated_ms > 0:
        summary["speedup_vs_interpreted"] = interpreted_ms / generated_ms
    return {"summary": summary}


# =============================================================================
# Reporting
# =============================================================================

def print_summary(results: dict, name: str, mode: str):
    """Print a formatted summary of results."""
    summary = results.get("summary", {})

    print(f"\n{'='*60}")
    if mode == "test":
        print(f"TEST SUMMARY: {name}")
    else:
        print(f"BENCHMARK SUMMARY: {name}")
    print(f"{'='*60}")

    print(f"Samples matched:          {summary.get('matched', 0)}/{summary.get('samples', 0)}")
    if mode == "test":
        if summary.get('all_passed', False):
            print("All tests PASSED")
        else:
            mismatches = summary.get('mismatches', 0)
            print(f"FAILED: {mismatches} sample(s) where the matchers disagree")
    else:
        print(f"Total interpreted time:   {summary.get('total_interpreted_ms', 0):.3f}ms")
        print(f"Total generated time:     {summary.get('total_generated_ms', 0):.3f}ms")
        if "total_re_ms" in summary:
            print(f"Total re time:            {summary['total_re_ms']:.3f}ms")

        speedup = summary.get('speedup_vs_interpreted', 0)
        if speedup > 0:
            print(f"Speedup vs interpreted:   {speedup:.1f}x")

        speedup_re = summary.get('speedup_vs_re', 0)
        if speedup_re > 0:
            print(f"Speedup vs re:            {speedup_re:.1f}x")


def save_results(results: dict, output_json: str, name: str, mode: str):
    output_path = Path(output_json)
    # If output_json is a directory, create a file named after the pattern
    if output_path.is_dir() or output_json.endswith('/') or output_json.endswith('\\'):
        suffix = "test" if mode == "test" else "benchmark"
        output_path = Path(output_json) / f"{name}_{suffix}.json"
        output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(results, f, indent=2)
    print(f"\nResults saved to: {output_path}")


def run_single_pattern(name: str, pattern: str, re_pattern: str | None,
                       samples: list[bytes], mode: str, iterations: int,
                       verbose: bool = False, output_json: str = None) -> bool:
    """Run a complete test/benchmark cycle for a single pattern."""
    print(f"\n{'='*60}")
    print(f"{'Test' if mode == 'test' else 'Benchmark'}: {name}")
    print(f"Mode: {mode}, Iterations: {iterations}")
    print(f"Pattern:       {pattern[:50]}{'...' if len(pattern) > 50 else ''}")
    if re_pattern:
        print(f"re pattern:    {re_pattern[:50]}{'...' if len(re_pattern) > 50 else ''}")
    print(f"Samples:       {len(samples)}")
    print(f"{'='*60}")

    # Step 1: Compile the pattern and generate the specialized matcher
    print("\n[1/2] Compiling pattern...")
    try:
        compiled, generated, regex = build_matchers(name, pattern, re_pattern)
    except CompileError as e:
        print(f"Error compiling pattern:\n{e.render(pattern)}", file=sys.stderr)
        return False
    except re.error as e:
        print(f"Error compiling re pattern: {e}", file=sys.stderr)
        return False
    print(f"Compiled: {compiled!r}")

    # Step 2: Run
    print(f"\n[2/2] Running {'tests' if mode == 'test' else 'benchmarks'}...")
    if mode == "test":
        results = run_correctness(compiled, generated, regex, samples, verbose)
    else:
        results = run_benchmark(compiled, generated, regex, samples, iterations)

    print_summary(results, name, mode)

    if output_json:
        save_results(results, output_json, name, mode)

    if mode == "test":
        return results.get("summary", {}).get("all_passed", False)
    return True


# =============================================================================
# CLI Commands
# =============================================================================

def load_config(config_path: Path) -> dict:
    """Load and validate configuration file."""
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        print("Create a config.yaml file or specify one with --config")
        sys.exit(1)

    with open(config_path, encoding='utf-8') as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        print(f"Error: Expected dict in config file with 'inputs' and 'benchmarks' keys", file=sys.stderr)
        sys.exit(1)

    return config


def list_patterns(config: dict, config_path: Path):
    """List available patterns from config."""
    inputs_config = config.get("inputs", {})
    benchmarks = config.get("benchmarks", [])

    print(f"Available patterns in {config_path}:")
    for b in benchmarks:
        name = b.get("name", "unnamed")
        pattern = b.get("pattern", "")[:40]
        re_pattern = b.get("re_pattern", "")[:40]
        input_names = ", ".join(b.get("inputs", []))
        print(f"  - {name}:")
        print(f"      pattern: {pattern}")
        print(f"      re:      {re_pattern}")
        print(f"      inputs:  [{input_names}]")

    print(f"\nAvailable inputs:")
    for input_name, input_cfg in inputs_config.items():
        if "dataset" in input_cfg:
            dataset = input_cfg.get("dataset", "?")
            subset = input_cfg.get("subset", "")
            max_samples = input_cfg.get("max_samples")
            samples_str = f"{max_samples}" if max_samples else "all"
            print(f"  - {input_name}: {dataset}/{subset} ({samples_str} lines)")
        elif "file" in input_cfg:
            print(f"  - {input_name}: {input_cfg['file']}")
        else:
            print(f"  - {input_name}: {len(input_cfg.get('lines') or [])} inline lines")


def run_command(args, mode: str, default_iterations: int) -> int:
    """Shared driver for the test and bench commands."""
    config_path = Path(args.config)
    config = load_config(config_path)

    if args.list:
        list_patterns(config, config_path)
        return 0

    inputs_config = config.get("inputs", {})
    benchmarks = config.get("benchmarks", [])

    if not isinstance(benchmarks, list):
        print(f"Error: 'benchmarks' should be a list", file=sys.stderr)
        return 1

    # Filter by name if specified
    if args.name:
        benchmarks = [b for b in benchmarks if b.get("name") == args.name]
        if not benchmarks:
            print(f"Error: No pattern named '{args.name}' found")
            return 1

    all_success = True
    total_runs = 0
    iterations = args.iterations if args.iterations else default_iterations

    for benchmark in benchmarks:
        name = benchmark.get("name", "unnamed")
        pattern = benchmark.get("pattern")
        re_pattern = benchmark.get("re_pattern")
        input_names = benchmark.get("inputs", [])

        if pattern is None:
            print(f"Error: Pattern '{name}' missing 'pattern'", file=sys.stderr)
            all_success = False
            continue

        if not input_names:
            print(f"Warning: Pattern '{name}' has no inputs specified", file=sys.stderr)
            continue

        # Run against each input separately
        for input_name in input_names:
            if input_name not in inputs_config:
                print(f"Error: Input '{input_name}' not found in inputs config", file=sys.stderr)
                all_success = False
                continue

            samples = load_input(inputs_config[input_name], input_name, config_path.parent)
            if not samples:
                print(f"Warning: No samples loaded for input '{input_name}'", file=sys.stderr)
                continue

            if not run_single_pattern(name, pattern, re_pattern, samples, mode,
                                      iterations, args.verbose, args.output):
                all_success = False
            total_runs += 1

    print(f"\n{'='*60}")
    noun = "TEST(S) PASSED" if mode == "test" else "BENCHMARK(S) COMPLETED SUCCESSFULLY"
    if all_success:
        print(f"ALL {total_runs} {noun}")
    else:
        print(f"SOME {'TESTS' if mode == 'test' else 'BENCHMARKS'} FAILED")
    print(f"{'='*60}")

    return 0 if all_success else 1


def cmd_test(args):
    """Run tests (agreement between matchers)."""
    return run_command(args, "test", 1)


def cmd_bench(args):
    """Run benchmarks (performance comparison)."""
    return run_command(args, "bench", 50)


def main():
    parser = argparse.ArgumentParser(
        description="strmatch test and benchmark runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  test    Check that interpreted, generated and re matchers agree
  bench   Time interpreted vs generated vs re matchers

Examples:
  python run.py test                    # Run all tests
  python run.py test -n http_get        # Test specific pattern
  python run.py bench                   # Run all benchmarks
  python run.py bench --iterations 100  # More iterations
  python run.py bench -o results/       # Save JSON results
"""
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Common arguments
    def add_common_args(p):
        p.add_argument("--config", "-c", default=str(ROOT_DIR / "config.yaml"),
                       help="YAML config file (default: config.yaml)")
        p.add_argument("--name", "-n", help="Run only the pattern with this name")
        p.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
        p.add_argument("--list", "-l", action="store_true", help="List available patterns")
        p.add_argument("--output", "-o", help="Save JSON results to file or directory")
        p.add_argument("--iterations", "-i", type=int, help="Number of iterations (default: 1 for test, 50 for bench)")

    # Test subcommand
    test_parser = subparsers.add_parser("test", help="Run correctness tests")
    add_common_args(test_parser)
    test_parser.set_defaults(func=cmd_test)

    # Bench subcommand
    bench_parser = subparsers.add_parser("bench", help="Run performance benchmarks")
    add_common_args(bench_parser)
    bench_parser.set_defaults(func=cmd_bench)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
