import argparse
import time
import schedule
import logging
import sys

from config import app_config
from database.config import get_db_context
from services.auto_approval import AutoApprovalSweeper
from services.payout_service import PayoutOrchestrator

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)


def run_sweep_cycle():
    logging.info("Starting Auto-Approval Sweep...")
    try:
        with get_db_context() as db:
            summary = AutoApprovalSweeper(db).sweep()
            logging.info(f"Sweep Complete. {summary['approved']} approved, {summary['skipped']} skipped.")
    except Exception as e:
        logging.error(f"Error in sweep cycle: {e}")


def run_payout_cycle():
    logging.info("Starting Queued Payout Cycle...")
    try:
        with get_db_context() as db:
            results = PayoutOrchestrator(db).process_queued()
            logging.info(f"Payout Cycle Complete. {len(results)} payouts processed.")
    except Exception as e:
        logging.error(f"Error in payout cycle: {e}")


def run_reconcile_cycle():
    logging.info("Starting Payout Reconciliation...")
    try:
        with get_db_context() as db:
            report = PayoutOrchestrator(db).reconcile_processing()
            summary = report["summary"]
            if summary["ambiguous"]:
                logging.warning(f"{summary['ambiguous']} payouts need operator attention")
            logging.info(f"Reconciliation Complete. {summary}")
    except Exception as e:
        logging.error(f"Error in reconcile cycle: {e}")


def run_all_cycles():
    run_sweep_cycle()
    run_payout_cycle()
    run_reconcile_cycle()


def start_scheduler():
    logging.info(
        f"Starting Payout Scheduler (sweep every {app_config.AUTO_APPROVAL_SWEEP_MINUTES} min, "
        f"queue every {app_config.PAYOUT_QUEUE_MINUTES} min, "
        f"reconcile every {app_config.PAYOUT_RECONCILE_STALE_MINUTES} min)..."
    )
    # Run once immediately
    run_all_cycles()

    schedule.every(app_config.AUTO_APPROVAL_SWEEP_MINUTES).minutes.do(run_sweep_cycle)
    schedule.every(app_config.PAYOUT_QUEUE_MINUTES).minutes.do(run_payout_cycle)
    schedule.every(app_config.PAYOUT_RECONCILE_STALE_MINUTES).minutes.do(run_reconcile_cycle)

    while True:
        schedule.run_pending()
        time.sleep(30)


def main():
    parser = argparse.ArgumentParser(description="Creator Payouts Worker")
    parser.add_argument("--mode", choices=["once", "schedule"], default="schedule", help="Run once or schedule")
    args = parser.parse_args()

    if args.mode == "schedule":
        start_scheduler()
    else:
        run_all_cycles()


if __name__ == "__main__":
    main()
