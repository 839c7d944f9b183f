import sys

from iec_meter_sim.cli import main

sys.exit(main())
