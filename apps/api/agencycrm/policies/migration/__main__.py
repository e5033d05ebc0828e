from agencycrm.policies.migration.cli import main

raise SystemExit(main())
