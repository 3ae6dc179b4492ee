#!/usr/bin/env python3
"""
Command-line interface for the GGompertz/NBD model.

Usage:
    python scripts/run_model.py [COMMAND] [OPTIONS]

Commands:
    simulate     - Write a synthetic customer base (x, t_x, T_cal) to CSV
    train        - Fit the model to a customer CSV and save it
    predict      - Score customers with a saved model

Examples:
    python scripts/run_model.py simulate customers.csv --n-customers 2000
    python scripts/run_model.py train customers.csv --cov-life gender --cov-trans gender age
    python scripts/run_model.py predict --model-path models/ggomnbd_model.pkl --periods 52
"""

import argparse
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from dotenv import load_dotenv

from ggomnbd.config import reload_config
from ggomnbd.data import create_sample_customers
from ggomnbd.errors import GGompertzNBDError
from ggomnbd.models import GGompertzNBDModel, OptimizerConfig, create_ggomnbd_model


class ModelExecutionError(Exception):
    """Custom exception for model execution errors."""
    pass


class GGompertzNBDRunner:
    """Runs the simulate / train / predict commands."""

    def __init__(self, config_path: Optional[str] = None, verbose: bool = False):
        """
        Initialize the model runner.

        Args:
            config_path: Optional path to a .env configuration file
            verbose: Enable debug logging
        """
        if config_path:
            load_dotenv(config_path, override=True)

        self.config = reload_config()
        if verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        self.logger = logging.getLogger(__name__)

        if config_path:
            self.logger.info(f"Loaded configuration from {config_path}")

        if not self.config.validate_config():
            raise ModelExecutionError("Configuration validation failed")

    def simulate(
        self,
        output_path: str,
        n_customers: int = 1000,
        random_seed: int = 42,
        params: Optional[Dict[str, float]] = None,
        T_cal: float = 52.0
    ) -> Dict:
        """
        Simulate customers and write them to CSV.

        Returns:
            Dictionary with the output file and simulation summary
        """
        customers = create_sample_customers(
            n_customers=n_customers, random_seed=random_seed, T_cal=T_cal, **(params or {})
        )

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        customers.to_csv(output_path, index=False)
        self.logger.info(f"Wrote {len(customers)} customers to {output_path}")

        return {
            'output_file': str(output_path),
            'n_customers': len(customers),
            'repeat_rate': float((customers['x'] > 0).mean()),
        }

    def train_model(
        self,
        data_path: str,
        names_cov_life: Optional[List[str]] = None,
        names_cov_trans: Optional[List[str]] = None,
        id_column: Optional[str] = None,
        use_cor: bool = False,
        reg_lambdas: Optional[Dict[str, float]] = None,
        names_constr: Optional[List[str]] = None,
        method: Optional[str] = None,
        output_dir: Optional[str] = None
    ) -> Dict:
        """
        Fit the model to customer data read from CSV and save it.

        Returns:
            Dictionary with the saved model path, fit statistics and coefficients
        """
        self.logger.info(f"Loading data from {data_path}")
        try:
            data = pd.read_csv(data_path)
        except (OSError, pd.errors.ParserError) as e:
            raise ModelExecutionError(f"Could not read {data_path}: {e}") from e

        optimizer = None
        if method:
            optimizer = OptimizerConfig.from_config(self.config.estimation, use_cor=use_cor)
            optimizer.method = method

        try:
            model = create_ggomnbd_model(
                names_cov_life=names_cov_life or (),
                names_cov_trans=names_cov_trans or (),
                id_column=id_column,
            )
            model.fit(
                data,
                use_cor=use_cor,
                reg_lambdas=reg_lambdas,
                names_constr=names_constr or (),
                optimizer=optimizer,
            )
        except GGompertzNBDError as e:
            raise ModelExecutionError(f"Model training failed: {e}") from e

        output_path = Path(output_dir) if output_dir else self.config.estimation.model_output_dir
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        model_file = output_path / f"ggomnbd_model_{timestamp}.pkl"
        model.save_model(model_file)

        summary = model.summary()
        summary_file = output_path / f"ggomnbd_summary_{timestamp}.csv"
        summary.to_csv(summary_file)

        return {
            'model_file': str(model_file),
            'summary_file': str(summary_file),
            'n_customers': model.n_customers,
            'log_likelihood': model.log_likelihood,
            'converged': model.result.converged,
            'reliable': model.result.reliable,
            'coefficients': model.coef().to_dict(),
        }

    def predict(
        self,
        model_path: str,
        data_path: Optional[str] = None,
        periods: Optional[float] = None,
        output_path: Optional[str] = None
    ) -> Dict:
        """
        Score customers with a saved model and write the predictions to CSV.

        Returns:
            Dictionary with the output file and prediction summary
        """
        try:
            model = GGompertzNBDModel.load_model(model_path)
            data = pd.read_csv(data_path) if data_path else None
            predictions = model.predict(data=data, periods=periods)
        except (GGompertzNBDError, OSError) as e:
            raise ModelExecutionError(f"Prediction failed: {e}") from e

        if output_path is None:
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            output_path = Path(model_path).parent / f"ggomnbd_predictions_{timestamp}.csv"
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        predictions.to_csv(output_path)
        self.logger.info(f"Wrote predictions for {len(predictions)} customers to {output_path}")

        return {
            'output_file': str(output_path),
            'n_customers': len(predictions),
            'period_length': float(predictions['period_length'].iloc[0]),
            'mean_palive': float(predictions['PAlive'].mean()),
            'total_cet': float(predictions['CET'].sum()),
        }


def parse_reg_lambdas(values: Optional[List[float]]) -> Optional[Dict[str, float]]:
    """Turn ``--reg-lambdas LIFE TRANS`` into the mapping fit() expects."""
    if values is None:
        return None
    life, trans = values
    return {'life': life, 'trans': trans}


def create_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="GGompertz/NBD customer-base model CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Simulate a customer base
  python scripts/run_model.py simulate customers.csv --n-customers 2000 --seed 1

  # Fit with static covariates and an equality constraint
  python scripts/run_model.py train customers.csv --cov-life gender --cov-trans gender --constrain gender

  # Predict the next 26 periods
  python scripts/run_model.py predict --model-path models/ggomnbd_model.pkl --periods 26
        """
    )

    # Global arguments
    parser.add_argument('--config', type=str, help='Path to configuration file (.env)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Simulate command
    simulate_parser = subparsers.add_parser('simulate', help='Write a synthetic customer base')
    simulate_parser.add_argument('output_path', type=str, help='CSV file to write')
    simulate_parser.add_argument('--n-customers', type=int, default=1000, help='Number of customers')
    simulate_parser.add_argument('--seed', type=int, default=42, help='Random seed')
    simulate_parser.add_argument('--T-cal', dest='T_cal', type=float, default=52.0,
                                 help='Length of the calibration period')
    for name, default in (('r', 0.5), ('alpha', 10.0), ('b', 0.05), ('s', 0.5), ('beta', 5.0)):
        simulate_parser.add_argument(f'--{name}', type=float, default=default, help=f'Model parameter {name}')

    # Train command
    train_parser = subparsers.add_parser('train', help='Fit the model to a customer CSV')
    train_parser.add_argument('data_path', type=str, help='CSV with columns x, t_x, T_cal')
    train_parser.add_argument('--cov-life', nargs='+', default=[], help='Lifetime covariate columns')
    train_parser.add_argument('--cov-trans', nargs='+', default=[], help='Transaction covariate columns')
    train_parser.add_argument('--id-column', type=str, help='Column with customer ids')
    train_parser.add_argument('--correlation', action='store_true',
                              help='Estimate the correlation between purchase and attrition rate')
    train_parser.add_argument('--reg-lambdas', nargs=2, type=float, metavar=('LIFE', 'TRANS'),
                              help='L2 penalties on the covariate coefficients')
    train_parser.add_argument('--constrain', nargs='+', default=[],
                              help='Covariates with equal lifetime and transaction coefficients')
    train_parser.add_argument('--method', type=str, help='scipy.optimize.minimize method')
    train_parser.add_argument('--output-dir', type=str, help='Directory for the model and summary')

    # Predict command
    predict_parser = subparsers.add_parser('predict', help='Score customers with a saved model')
    predict_parser.add_argument('--model-path', type=str, required=True, help='Path to trained model file')
    predict_parser.add_argument('--data-path', type=str,
                                help='Customers to score (uses training data if not provided)')
    predict_parser.add_argument('--periods', type=float, help='Prediction horizon')
    predict_parser.add_argument('--output', type=str, help='CSV file for the predictions')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        runner = GGompertzNBDRunner(config_path=args.config, verbose=args.verbose)

        if args.command == 'simulate':
            results = runner.simulate(
                output_path=args.output_path,
                n_customers=args.n_customers,
                random_seed=args.seed,
                params={'r': args.r, 'alpha': args.alpha, 'b': args.b, 's': args.s, 'beta': args.beta},
                T_cal=args.T_cal,
            )
            print(f"Simulated {results['n_customers']} customers "
                  f"(repeat rate {results['repeat_rate']:.1%}) -> {results['output_file']}")

        elif args.command == 'train':
            results = runner.train_model(
                data_path=args.data_path,
                names_cov_life=args.cov_life,
                names_cov_trans=args.cov_trans,
                id_column=args.id_column,
                use_cor=args.correlation,
                reg_lambdas=parse_reg_lambdas(args.reg_lambdas),
                names_constr=args.constrain,
                method=args.method,
                output_dir=args.output_dir,
            )
            print(f"Fitted {results['n_customers']} customers, LL = {results['log_likelihood']:.4f}")
            if not results['reliable']:
                print("Warning: the estimates or the Hessian are not reliable")
            print(json.dumps(results['coefficients'], indent=2))
            print(f"Model saved to: {results['model_file']}")

        elif args.command == 'predict':
            results = runner.predict(
                model_path=args.model_path,
                data_path=args.data_path,
                periods=args.periods,
                output_path=args.output,
            )
            print(f"Predicted {results['n_customers']} customers over {results['period_length']:g} periods "
                  f"(mean PAlive {results['mean_palive']:.3f}, total CET {results['total_cet']:.1f})")
            print(f"Predictions saved to: {results['output_file']}")

        return 0

    except ModelExecutionError as e:
        print(f"\nExecution failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nExecution interrupted by user", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
