#!/usr/bin/env python3
"""
Follow-up Scheduler - triggers the payment follow-up run on a fixed cadence
"""

import time
import schedule
from datetime import datetime
from app import create_app

def run_followups(app):
    """Run one follow-up pass within the Flask app context"""
    with app.app_context():
        try:
            print(f"[{datetime.now()}] Starting payment follow-up run...")
            results = app.extensions['clinic_services'].followup_scheduler().run()
            print(f"[{datetime.now()}] Follow-ups done: sent={results['sent']} "
                  f"skipped={results['skipped']} errors={len(results['errors'])}")
            for error in results['errors']:
                print(f"    {error}")
        except Exception as e:
            print(f"[{datetime.now()}] Follow-up run failed: {str(e)}")

def main():
    """Main scheduler function"""
    app = create_app()
    run_at = app.extensions['clinic_services'].settings.followup_run_time
    print(f"Follow-up Scheduler started, daily run at {run_at}...")

    schedule.every().day.at(run_at).do(run_followups, app)

    # Run initial check
    run_followups(app)

    while True:
        schedule.run_pending()
        time.sleep(60)

if __name__ == '__main__':
    main()
